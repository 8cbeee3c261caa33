"""
Read-only dashboard: health, ledger stats and recent entries
"""
import html
import logging
import threading

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import HTMLResponse

from service import AddressIssueService

logger = logging.getLogger(__name__)

PAGE_STYLE = """
    body { font-family: -apple-system, Segoe UI, Roboto, sans-serif; max-width: 1100px; margin: 0 auto; padding: 20px; background: #f3f4f6; }
    .cards { display: grid; grid-template-columns: repeat(auto-fit,minmax(200px,1fr)); gap: 12px; margin: 16px 0; }
    .card { background: white; border-radius: 10px; padding: 16px; box-shadow: 0 1px 2px rgba(0,0,0,0.08); }
    .num { font-size: 30px; font-weight: 800; }
    .label { color: #6b7280; font-size: 12px; margin-top: 6px; }
    table { width: 100%; border-collapse: collapse; background: white; }
    th { background: #111827; color: white; text-align: left; padding: 12px; font-size: 13px; }
    td { padding: 12px; border-bottom: 1px solid #e5e7eb; font-size: 13px; vertical-align: top; }
    .muted { color: #6b7280; }
"""


def render_dashboard(health: dict, stats: dict, recent: list) -> str:
    e = html.escape
    cards = ''.join(
        f'<div class="card"><div class="num">{count}</div>'
        f'<div class="label">{e(str(status).upper())}</div></div>'
        for status, count in sorted(stats.items())
    )
    rows = ''.join(
        '<tr>'
        f'<td><strong>{e(entry.source_order_name or entry.business_number or "")}</strong></td>'
        f'<td>{e(entry.status)}</td>'
        f'<td>{e(entry.destination_order_id or "")}</td>'
        f'<td class="muted">{e((entry.note or "")[:220])}</td>'
        f'<td class="muted">{e(str(entry.updated_at))}</td>'
        '</tr>'
        for entry in recent
    )

    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>Address Issue Tagger</title>
  <meta http-equiv="refresh" content="30" />
  <style>{PAGE_STYLE}</style>
</head>
<body>
  <h1>Address Issue Tagger</h1>
  <p class="muted">Source: <strong>{e(str(health.get('source_type') or ''))}</strong> &bull; Tag: <strong>{e(health.get('tag_name') or '')}</strong></p>
  <p class="muted">Poll every {e(str(health.get('poll_interval_seconds')))}s</p>
  <p class="muted">Last poll: <code>{e(health.get('last_watermark') or 'none yet')}</code></p>
  <div class="cards">{cards}</div>
  <h2>Recent Processed</h2>
  <table>
    <thead>
      <tr><th>Source Order</th><th>Status</th><th>Destination Order ID</th><th>Note</th><th>Updated</th></tr>
    </thead>
    <tbody>{rows}</tbody>
  </table>
</body>
</html>"""


def create_app(service: AddressIssueService, poll_interval: int = None, **health_extra) -> FastAPI:
    app = FastAPI(title="Address Issue Tagger")

    @app.get("/health")
    def health():
        return service.health(poll_interval=poll_interval, **health_extra)

    @app.get("/api/stats")
    def stats():
        return service.ledger.stats()

    @app.get("/api/recent")
    def recent(limit: int = Query(50, ge=1, le=500)):
        return [entry.to_dict() for entry in service.ledger.recent(limit)]

    @app.get("/", response_class=HTMLResponse)
    def index():
        return render_dashboard(
            service.health(poll_interval=poll_interval, **health_extra),
            service.ledger.stats(),
            service.ledger.recent(50),
        )

    return app


def serve_in_background(app: FastAPI, port: int) -> threading.Thread:
    """Run uvicorn in a daemon thread; it dies with the process"""
    server = uvicorn.Server(uvicorn.Config(app, host='0.0.0.0', port=port, log_level='warning'))
    thread = threading.Thread(target=server.run, name='dashboard', daemon=True)
    thread.start()
    logger.info("Dashboard running on port %d (health: /health)", port)
    return thread
