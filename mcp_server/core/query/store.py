import threading
from datetime import datetime
from typing import Dict, List

from mcp_server.core.schemas import QueryResponse
from mcp_server.core.query.errors import QueryNotFoundError


class ResultStore:
    """
    Thread safe map of query id -> QueryResponse.

    Every in-flight request writes here, so all access goes through one lock.
    Nothing is evicted implicitly; the owner calls evict_older_than().
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._results: Dict[str, QueryResponse] = {}

    def put(self, response: QueryResponse) -> None:
        with self._lock:
            self._results[response.id] = response

    def get(self, query_id: str) -> QueryResponse:
        with self._lock:
            response = self._results.get(query_id)
        if response is None:
            raise QueryNotFoundError(query_id)
        return response

    def evict_older_than(self, cutoff: datetime) -> int:
        """Drop every result created before `cutoff`. Returns how many were removed."""
        with self._lock:
            expired = [
                query_id
                for query_id, response in self._results.items()
                if response.created_at < cutoff
            ]
            for query_id in expired:
                del self._results[query_id]
        return len(expired)

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._results)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __contains__(self, query_id: object) -> bool:
        with self._lock:
            return query_id in self._results
