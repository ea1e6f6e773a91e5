"""
Memora Backend — Offset Pagination
====================================

What:  Runs a SELECT as one page plus a COUNT of the whole result.
How:   page (>=1) and per_page (1-100, default 10) become OFFSET/LIMIT;
       the count wraps the unpaged query as a subquery so filters and joins
       are honored.
Returns the rows and the {page, limit, total, totalPages} block.
"""

import math
from typing import Any, List, Tuple

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from memora.schemas.common import PaginationMeta

DEFAULT_PER_PAGE = 10
MAX_PER_PAGE = 100


async def paginate(
    db: AsyncSession,
    query: Select,
    page: int = 1,
    per_page: int = DEFAULT_PER_PAGE,
) -> Tuple[List[Any], PaginationMeta]:
    page = max(1, page)
    per_page = min(max(1, per_page), MAX_PER_PAGE)

    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = (await db.execute(count_query)).scalar() or 0

    result = await db.execute(query.offset((page - 1) * per_page).limit(per_page))
    items = list(result.scalars().all())

    meta = PaginationMeta(
        page=page,
        limit=per_page,
        total=total,
        total_pages=math.ceil(total / per_page) if total else 0,
    )
    return items, meta
