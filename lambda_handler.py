import json
import logging

from main import build_service

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def lambda_handler(event, context, service=None):
    """Run a single reconciliation pass per invocation"""
    logger.info("Lambda invocation started")
    results = {'status': 'success'}
    try:
        service = service or build_service()
        stats = service.run_pass()
        results['results'] = stats.to_dict()
    except Exception as e:
        logger.error(f"Error: {e}", exc_info=True)
        results['status'] = 'error'
        results['error'] = str(e)
        if service is not None and service.last_stats is not None:
            results['results'] = service.last_stats.to_dict()
        return {'statusCode': 500, 'body': json.dumps(results)}
    return {'statusCode': 200, 'body': json.dumps(results)}
