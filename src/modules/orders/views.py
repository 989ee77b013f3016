"""Order API views.

Exposes ``OrderService``, ``StatusTransitionService`` and the business
event router via HTTP using DRF ViewSets.  Domain exceptions are caught
and translated into ``{"detail": ..., "code": ...}`` responses; the view
never swallows generic exceptions.
"""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend
from pydantic import ValidationError as DTOValidationError
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.customers.exceptions import CustomerNotFound, InactiveCustomer
from modules.customers.repositories.django_repository import CustomerDjangoRepository
from modules.orders.dtos import (
    CreateOrderDTO,
    CreateOrderItemDTO,
    CreatePackagingDTO,
    TransitionContext,
)
from modules.orders.exceptions import (
    ConcurrentTransition,
    InvalidTransition,
    OrderDomainError,
    OrderNotFound,
    UnknownStatus,
)
from modules.orders.filters import OrderFilter
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.routing import business_event_router
from modules.orders.serializers import (
    BulkTransitionSerializer,
    BusinessEventSerializer,
    CreateOrderSerializer,
    OrderListSerializer,
    OrderSerializer,
    TransitionSerializer,
)
from modules.orders.services import OrderService, StatusTransitionService
from modules.products.exceptions import InactiveProduct, PriceUnavailable, ProductNotFound
from modules.products.repositories.django_repository import ProductDjangoRepository


def error_response(exc: Exception, http_status: int, code: str | None = None) -> Response:
    """``{"detail", "code"}`` body for a domain exception."""
    detail = getattr(exc, "message", None) or str(exc)
    return Response(
        {"detail": detail, "code": code or getattr(exc, "code", "error")},
        status=http_status,
    )


class OrderViewSet(GenericViewSet):
    """ViewSet for Order operations.

    Uses ``OrderService`` / ``StatusTransitionService`` with injected
    repositories (DIP).  Does **not** extend ``ModelViewSet``: all writes
    go through the service layer.
    """

    queryset = Order.objects.alive()
    filterset_class = OrderFilter
    search_fields = ["order_number", "customer__name"]
    ordering_fields = ["created_at", "total_amount", "status", "delivery_date"]
    ordering = ["-created_at", "-id"]
    filter_backends = [DjangoFilterBackend, SearchFilter, OrderingFilter]
    pagination_class = StandardResultsSetPagination

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        order_repository = OrderDjangoRepository()
        self._service = OrderService(
            order_repository=order_repository,
            customer_repository=CustomerDjangoRepository(),
            product_repository=ProductDjangoRepository(),
        )
        self._transitions = StatusTransitionService(order_repository)
        self._router = business_event_router

    def _context(self, request: Request, notes: str = "") -> TransitionContext:
        return TransitionContext(
            manual=True,
            notes=notes or None,
            actor_id=getattr(request.user, "pk", None),
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: Request) -> Response:
        """POST /api/v1/orders/

        Supports idempotency via the ``Idempotency-Key`` header.
        ``is_recurring=true`` creates a recurring template.
        """
        create_serializer = CreateOrderSerializer(data=request.data)
        create_serializer.is_valid(raise_exception=True)
        data = create_serializer.validated_data

        recurring = {
            key: data[key]
            for key in (
                "recurring_frequency",
                "recurring_interval",
                "recurring_start_date",
                "recurring_end_date",
            )
            if data.get(key) is not None
        }
        try:
            dto = CreateOrderDTO(
                customer_id=data["customer_id"],
                items=[
                    CreateOrderItemDTO(
                        product_id=item["product_id"],
                        quantity=item["quantity"],
                        price_variation_id=item.get("price_variation_id"),
                    )
                    for item in data["items"]
                ],
                packaging=[
                    CreatePackagingDTO(
                        packaging_type_id=pack["packaging_type_id"],
                        quantity=pack["quantity"],
                        notes=pack.get("notes", ""),
                    )
                    for pack in data.get("packaging", [])
                ],
                order_type=data["order_type"],
                billing_frequency=data["billing_frequency"],
                requires_invoice=data["requires_invoice"],
                harvest_date=data.get("harvest_date"),
                delivery_date=data.get("delivery_date"),
                notes=data.get("notes", ""),
                idempotency_key=request.headers.get("Idempotency-Key"),
                is_recurring=data["is_recurring"],
                **recurring,
            )
        except DTOValidationError as exc:
            return Response(
                {
                    "detail": exc.errors(include_url=False, include_context=False),
                    "code": "invalid_order",
                },
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            order = self._service.create_order(dto)
        except CustomerNotFound as exc:
            return error_response(exc, status.HTTP_404_NOT_FOUND, "customer_not_found")
        except InactiveCustomer as exc:
            return error_response(exc, status.HTTP_400_BAD_REQUEST, "inactive_customer")
        except ProductNotFound as exc:
            return error_response(exc, status.HTTP_404_NOT_FOUND, "product_not_found")
        except InactiveProduct as exc:
            return error_response(exc, status.HTTP_400_BAD_REQUEST, "inactive_product")
        except PriceUnavailable as exc:
            return error_response(exc, status.HTTP_400_BAD_REQUEST, "price_unavailable")

        out = OrderSerializer(order)
        return Response(out.data, status=status.HTTP_201_CREATED)

    # ------------------------------------------------------------------
    # List / Retrieve
    # ------------------------------------------------------------------

    def get_queryset(self):
        return self._service.list_orders()

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/

        Filtering (status, stage, customer, dates, totals) is handled by
        ``OrderFilter``; ordering by ``OrderingFilter``.  Results are
        paginated.
        """
        queryset = self.filter_queryset(self.get_queryset())
        page = self.paginate_queryset(queryset)
        serializer = OrderListSerializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/"""
        try:
            order = self._service.get_order(str(pk))
        except OrderNotFound as exc:
            return error_response(exc, status.HTTP_404_NOT_FOUND)
        serializer = OrderSerializer(order)
        return Response(serializer.data)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"])
    def transition(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/transition/  ``{status, notes}``"""
        serializer = TransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            order = self._transitions.transition(
                pk,
                data["status"],
                self._context(request, data.get("notes", "")),
            )
        except OrderNotFound as exc:
            return error_response(exc, status.HTTP_404_NOT_FOUND)
        except (UnknownStatus, InvalidTransition) as exc:
            return error_response(exc, status.HTTP_400_BAD_REQUEST)
        except ConcurrentTransition as exc:
            return error_response(exc, status.HTTP_409_CONFLICT)

        body = OrderSerializer(order).data
        body["side_effect_failures"] = [
            {"effect": failure.effect, "detail": failure.message, "code": failure.code}
            for failure in getattr(order, "side_effect_failures", [])
        ]
        return Response(body)

    @action(detail=True, methods=["get"], url_path="allowed-statuses")
    def allowed_statuses(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/allowed-statuses/"""
        try:
            order = self._service.get_order(str(pk))
        except OrderNotFound as exc:
            return error_response(exc, status.HTTP_404_NOT_FOUND)
        return Response(
            {
                "status": order.status,
                "stage": order.stage,
                "allowed_statuses": self._transitions.valid_next_statuses(order),
            }
        )

    @action(detail=False, methods=["post"], url_path="bulk-transition")
    def bulk_transition(self, request: Request) -> Response:
        """POST /api/v1/orders/bulk-transition/  ``{order_ids, status, notes}``"""
        serializer = BulkTransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            result = self._transitions.bulk_transition(
                data["order_ids"],
                data["status"],
                self._context(request, data.get("notes", "")),
            )
        except UnknownStatus as exc:
            return error_response(exc, status.HTTP_400_BAD_REQUEST)
        return Response(result.model_dump())

    # ------------------------------------------------------------------
    # Business events
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"])
    def events(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/events/  ``{event, payload}``

        ``applied`` is false when the event did not move the order (guard
        not met yet, or the order is already past that point).
        """
        serializer = BusinessEventSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if data["event"] not in self._router.events:
            return Response(
                {"detail": f"Unknown business event {data['event']!r}.", "code": "unknown_event"},
                status=status.HTTP_400_BAD_REQUEST,
            )
        try:
            order = self._service.get_order(str(pk))
            moved = self._router.handle_business_event(order, data["event"], data["payload"])
        except OrderNotFound as exc:
            return error_response(exc, status.HTTP_404_NOT_FOUND)
        except ConcurrentTransition as exc:
            return error_response(exc, status.HTTP_409_CONFLICT)
        except OrderDomainError as exc:
            return error_response(exc, status.HTTP_400_BAD_REQUEST)

        current = moved or self._service.get_order(str(pk))
        return Response({"applied": moved is not None, "order": OrderSerializer(current).data})
