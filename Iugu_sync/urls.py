from django.urls import path

from billing_sync import views

urlpatterns = [
    path("webhooks/iugu/", views.iugu_webhook, name="iugu-webhook"),
    path("healthz/", views.healthz, name="healthz"),
]
