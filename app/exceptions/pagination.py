def paginate_response(total: int, page: int, per_page: int, items: list):
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": per_page,
        "total_pages": (total // per_page) + (1 if total % per_page else 0),
    }
