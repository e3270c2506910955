from django.db import DEFAULT_DB_ALIAS
from rest_framework.response import Response
from rest_framework.views import APIView

from marketplace.exceptions import MarketplaceError
from marketplace.store import Store


class MarketplaceAPIView(APIView):
    """APIView that builds the store its services run against, one per request."""

    store_alias = DEFAULT_DB_ALIAS

    def get_store(self) -> Store:
        return Store(using=self.store_alias)


def error_response(exc: MarketplaceError) -> Response:
    return Response({"error": exc.message}, status=exc.status_code)


def not_found_response(message: str) -> Response:
    return Response({"error": message}, status=404)
