from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from .config import get_config
from .services.receiver import SIGNATURE_HEADERS, receive_webhook


@csrf_exempt
@require_POST
def iugu_webhook(request):
    signature = None
    for header in SIGNATURE_HEADERS:
        signature = request.headers.get(header)
        if signature:
            break
    result = receive_webhook(request.body, signature, get_config())
    return JsonResponse(result.as_body(), status=result.status_code)


@require_GET
def healthz(request):
    return JsonResponse({"ok": True})
