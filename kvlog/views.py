import logging

from django.conf import settings
from django.db import DatabaseError, connection
from drf_spectacular.utils import extend_schema, OpenApiParameter, OpenApiResponse
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
from rest_framework.views import APIView

from kvlog.exceptions import BackendError, Cancelled, DuplicateVersion, NotFound
from kvlog.serializers import (
    HistoryQuerySerializer,
    HistoryResponseSerializer,
    KeyValueSerializer,
    KeyValueWriteSerializer,
    ReadQuerySerializer,
)
from kvlog.services import read_history, read_value, request_deadline, set_value

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_PAGE_SIZE = 100
MAX_HISTORY_PAGE_SIZE = 1000

KEY_PARAMETER = OpenApiParameter(
    name="key",
    type=str,
    location=OpenApiParameter.PATH,
    description="The key",
)


class KVLogAPIView(APIView):
    """Maps store errors onto HTTP responses."""

    error_statuses = (
        (NotFound, status.HTTP_404_NOT_FOUND),
        (DuplicateVersion, status.HTTP_409_CONFLICT),
        (Cancelled, status.HTTP_504_GATEWAY_TIMEOUT),
        (BackendError, status.HTTP_503_SERVICE_UNAVAILABLE),
    )

    def handle_exception(self, exc):
        for error_class, status_code in self.error_statuses:
            if isinstance(exc, error_class):
                return Response({"detail": str(exc)}, status=status_code)
        return super().handle_exception(exc)


class KeyValueView(KVLogAPIView):
    """Read and write the current value of a key."""

    @extend_schema(
        operation_id="read_key",
        summary="Read a key's value",
        description="Retrieve the current value of a key. With `at`, retrieve the earliest version whose timestamp is at or after the given instant.",
        parameters=[KEY_PARAMETER, ReadQuerySerializer],
        responses={
            200: OpenApiResponse(
                response=KeyValueSerializer,
                description="Successfully retrieved the value",
            ),
            404: OpenApiResponse(description="Key (or a version at/after `at`) not found"),
        },
        tags=["Key-Value Operations"],
    )
    def get(self, request, key: str):
        query = ReadQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        entry, value = read_value(
            key, at=query.validated_data.get("at"), deadline=request_deadline()
        )
        return Response(
            KeyValueSerializer({"key": key, "timestamp": entry.timestamp, "value": value}).data
        )

    @extend_schema(
        operation_id="put_key",
        summary="Set a key's value",
        description="Record a new version of a key. Writing the key's current value again is a no-op and does not grow its history.",
        parameters=[KEY_PARAMETER],
        request=KeyValueWriteSerializer,
        responses={
            200: OpenApiResponse(
                response=KeyValueSerializer,
                description="Value unchanged; no new version recorded",
            ),
            201: OpenApiResponse(
                response=KeyValueSerializer,
                description="New version recorded",
            ),
            400: OpenApiResponse(description="Missing value or invalid key"),
            409: OpenApiResponse(description="A version with the same timestamp already exists"),
        },
        tags=["Key-Value Operations"],
    )
    def put(self, request, key: str):
        serializer = KeyValueWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            entry, value, created = set_value(
                key, serializer.validated_data["value"], deadline=request_deadline()
            )
        except ValueError as e:
            # Invalid key, e.g. longer than the history index allows
            raise ValidationError({"key": [str(e)]})

        status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
        return Response(
            KeyValueSerializer({"key": key, "timestamp": entry.timestamp, "value": value}).data,
            status=status_code,
        )


class KeyHistoryView(KVLogAPIView):
    """Return the versions of a key, newest first."""

    @extend_schema(
        operation_id="read_key_history",
        summary="Read a key's history",
        description="Retrieve the versions of a key in descending timestamp order. Returns an empty list for keys that were never written.",
        parameters=[
            KEY_PARAMETER,
            OpenApiParameter(
                name="limit",
                type=int,
                location=OpenApiParameter.QUERY,
                description="Maximum number of versions to return",
                required=False,
            ),
        ],
        responses={
            200: OpenApiResponse(
                response=HistoryResponseSerializer,
                description="Successfully retrieved the history",
            ),
            400: OpenApiResponse(description="Invalid limit"),
        },
        tags=["Key-Value Operations"],
    )
    def get(self, request, key: str):
        query = HistoryQuerySerializer(
            data=request.query_params,
            max_limit=getattr(settings, "KVLOG_MAX_HISTORY_PAGE_SIZE", MAX_HISTORY_PAGE_SIZE),
        )
        query.is_valid(raise_exception=True)
        limit = query.validated_data.get(
            "limit", getattr(settings, "KVLOG_HISTORY_PAGE_SIZE", DEFAULT_HISTORY_PAGE_SIZE)
        )

        versions, has_more = read_history(key, limit, deadline=request_deadline())

        response_data = {
            "key": key,
            "count": len(versions),
            "results": [{"timestamp": ts, "value": value} for ts, value in versions],
            "has_more": has_more,
        }
        return Response(HistoryResponseSerializer(response_data).data)


class HealthCheckView(APIView):
    """Health check endpoint."""

    @extend_schema(
        operation_id="health_check",
        summary="Health check",
        description="Returns health status of this node and whether its database is reachable.",
        responses={
            200: OpenApiResponse(description="Node is healthy"),
            503: OpenApiResponse(description="Database is unreachable"),
        },
        tags=["Health & Monitoring"],
    )
    def get(self, request):
        try:
            connection.ensure_connection()
        except DatabaseError as exc:
            logger.error(f"Health check failed: {exc}")
            return Response(
                {"status": "unhealthy", "backend": {"vendor": connection.vendor, "reachable": False}},
                status=status.HTTP_503_SERVICE_UNAVAILABLE,
            )

        return Response({
            "status": "healthy",
            "backend": {"vendor": connection.vendor, "reachable": True},
        }, status=status.HTTP_200_OK)
