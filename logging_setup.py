"""
Logging setup shared by all entry points
"""
import logging


def configure_logging(level='INFO', force: bool = False):
    """Initialise the root logger once.

    Accepts a level name or number. Pass ``force=True`` to reconfigure when
    the root logger already has handlers (lambda runtimes, tests).
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=force,
    )
    # requests/urllib3 log every connection at DEBUG
    logging.getLogger('urllib3').setLevel(logging.WARNING)
