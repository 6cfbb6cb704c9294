"""
HTTP trigger for the SRP pipeline, for external cron services.
"""

import logging

from django.conf import settings
from django.http import JsonResponse
from django.utils.crypto import constant_time_compare
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from core.srp.pipeline import run_pipeline

logger = logging.getLogger('srpwire')


def _authorized(request) -> bool:
    secret = settings.CRON_SECRET
    if not secret:
        return True
    header = request.headers.get('Authorization', '')
    return constant_time_compare(header, f'Bearer {secret}')


@csrf_exempt
@require_http_methods(['GET', 'POST'])
def cron_process_mail(request):
    """
    Run the pipeline and return its report.

    Answers 200 even when the run failed, so the cron service does not
    retry; the report carries the outcome.
    """
    if not _authorized(request):
        logger.warning('Rejected SRP cron trigger with a bad or missing secret')
        return JsonResponse({'error': 'Unauthorized'}, status=401)

    report = run_pipeline()
    return JsonResponse(report)
