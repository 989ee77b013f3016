"""Recurring template URL configuration."""

from __future__ import annotations

from rest_framework.routers import DefaultRouter

from modules.recurrence.views import RecurringTemplateViewSet

router = DefaultRouter(trailing_slash=True)
router.register("recurring-templates", RecurringTemplateViewSet, basename="recurring-template")

urlpatterns = router.urls
