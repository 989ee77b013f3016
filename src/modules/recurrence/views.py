"""Recurring template API views.

Thin wrappers over ``RecurrenceScheduler``; domain exceptions are mapped
to ``{"detail", "code"}`` responses like the order views.
"""

from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import action
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.orders.exceptions import (
    DuplicateGeneration,
    InactiveTemplate,
    MaterializationFailure,
    NotRecurringTemplate,
    OrderNotFound,
)
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.serializers import OrderSerializer
from modules.orders.views import error_response
from modules.recurrence.serializers import (
    RecurringTemplateSerializer,
    RunDateSerializer,
    UpcomingQuerySerializer,
)
from modules.recurrence.services import RecurrenceScheduler


class RecurringTemplateViewSet(GenericViewSet):
    """Browse recurring templates and drive them by hand.

    Templates are created through ``POST /api/v1/orders/`` with
    ``is_recurring=true``.
    """

    serializer_class = RecurringTemplateSerializer
    pagination_class = StandardResultsSetPagination

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._orders = OrderDjangoRepository()
        self._scheduler = RecurrenceScheduler(order_repository=self._orders)

    def get_queryset(self):
        return (
            self._scheduler.templates()
            .select_related("customer")
            .prefetch_related("items__product", "packaging")
            .order_by("next_generation_date", "created_at")
        )

    def list(self, request: Request) -> Response:
        """GET /api/v1/recurring-templates/"""
        queryset = self.get_queryset()
        active = request.query_params.get("active")
        if active is not None:
            queryset = queryset.filter(is_recurring_active=active.lower() in {"1", "true"})
        page = self.paginate_queryset(queryset)
        serializer = self.get_serializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/recurring-templates/{pk}/"""
        template = self._orders.get_by_id(str(pk))
        if template is None or not template.is_recurring:
            return error_response(
                OrderNotFound(f"Recurring template {pk} not found."),
                status.HTTP_404_NOT_FOUND,
            )
        return Response(self.get_serializer(template).data)

    # ------------------------------------------------------------------
    # Read-side summaries
    # ------------------------------------------------------------------

    @action(detail=False, methods=["get"])
    def stats(self, request: Request) -> Response:
        """GET /api/v1/recurring-templates/stats/"""
        return Response(self._scheduler.stats().model_dump(mode="json"))

    @action(detail=False, methods=["get"])
    def upcoming(self, request: Request) -> Response:
        """GET /api/v1/recurring-templates/upcoming/?days=7"""
        query = UpcomingQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        entries = self._scheduler.upcoming(days=query.validated_data.get("days"))
        return Response([entry.model_dump(mode="json") for entry in entries])

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"])
    def pause(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/recurring-templates/{pk}/pause/"""
        try:
            template = self._scheduler.pause(pk)
        except OrderNotFound as exc:
            return error_response(exc, status.HTTP_404_NOT_FOUND)
        except NotRecurringTemplate as exc:
            return error_response(exc, status.HTTP_400_BAD_REQUEST)
        return Response(self.get_serializer(template).data)

    @action(detail=True, methods=["post"])
    def resume(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/recurring-templates/{pk}/resume/  ``{date?}``"""
        body = RunDateSerializer(data=request.data)
        body.is_valid(raise_exception=True)
        try:
            template = self._scheduler.resume(pk, today=body.validated_data.get("date"))
        except OrderNotFound as exc:
            return error_response(exc, status.HTTP_404_NOT_FOUND)
        except NotRecurringTemplate as exc:
            return error_response(exc, status.HTTP_400_BAD_REQUEST)
        return Response(self.get_serializer(template).data)

    @action(detail=True, methods=["post"])
    def generate(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/recurring-templates/{pk}/generate/

        Generates the template's next order immediately.
        """
        try:
            order = self._scheduler.generate_next(pk)
        except OrderNotFound as exc:
            return error_response(exc, status.HTTP_404_NOT_FOUND)
        except (NotRecurringTemplate, InactiveTemplate) as exc:
            return error_response(exc, status.HTTP_400_BAD_REQUEST)
        except DuplicateGeneration as exc:
            return error_response(exc, status.HTTP_409_CONFLICT)
        except MaterializationFailure as exc:
            return error_response(exc, status.HTTP_400_BAD_REQUEST)

        generated = self._orders.get_by_id(str(order.id)) or order
        return Response(OrderSerializer(generated).data, status=status.HTTP_201_CREATED)
