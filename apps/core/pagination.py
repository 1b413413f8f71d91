"""
Pagination for list endpoints.
"""
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class StandardResultsSetPagination(PageNumberPagination):
    """Standard pagination for list endpoints."""
    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100


def paginated_response(request, queryset, serializer_class, key, context=None):
    """
    Paginate a queryset when `page` is requested, otherwise return everything.

    Unpaginated responses use the shape {'count': n, key: [...]}.
    """
    if 'page' in request.query_params or 'page_size' in request.query_params:
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = serializer_class(page, many=True, context=context or {})
        return paginator.get_paginated_response(serializer.data)

    serializer = serializer_class(queryset, many=True, context=context or {})
    return Response({
        'count': len(serializer.data),
        key: serializer.data,
    })
