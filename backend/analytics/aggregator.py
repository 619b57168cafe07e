from __future__ import annotations

from collections import Counter
from typing import Any, Iterable

from ..search.models import SearchLogEntry


def summarize_search_log(entries: Iterable[SearchLogEntry], top_n: int = 10) -> dict[str, Any]:
    entries = list(entries)
    total = len(entries)

    # Top queries, normalised for case and surrounding blanks
    query_counter: Counter[str] = Counter()
    zero_counter: Counter[str] = Counter()
    for e in entries:
        q = e.query.strip().lower()
        if not q:
            continue
        query_counter[q] += 1
        if e.result_count == 0:
            zero_counter[q] += 1
    top_queries = [{"query": q, "count": c} for q, c in query_counter.most_common(top_n)]
    zero_result_queries = [{"query": q, "count": c} for q, c in zero_counter.most_common(top_n)]

    # Search type usage
    type_usage = dict(Counter(e.search_type for e in entries))

    # Filter usage rates
    filter_counter: Counter[str] = Counter()
    for e in entries:
        for name, value in (e.filters or {}).items():
            if value not in (None, [], {}, ""):
                filter_counter[name] += 1
    filter_usage = {
        k: round(v / total * 100, 1) if total else 0.0
        for k, v in sorted(filter_counter.items())
    }

    results = [e.result_count for e in entries]
    zero_results = sum(1 for r in results if r == 0)

    return {
        "total_searches": total,
        "unique_queries": len(query_counter),
        "unique_users": len({e.user_id for e in entries if e.user_id is not None}),
        "avg_result_count": round(sum(results) / total, 1) if total else 0.0,
        "zero_result_rate": round(zero_results / total * 100, 1) if total else 0.0,
        "top_queries": top_queries,
        "zero_result_queries": zero_result_queries,
        "search_type_usage": type_usage,
        "filter_usage": filter_usage,
    }
