import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from rndc_bridge.api.deps import get_query_log, get_transport, require_auth
from rndc_bridge.domain.models import (
    QueryEnvelope,
    QueryExecuteRequest,
    QueryExecuteResponse,
    QueryListEnvelope,
    QueryRequest,
    QueryResult,
    RegistryAnswer,
)
from rndc_bridge.exceptions import BatchNotFoundError
from rndc_bridge.services.query_log import QueryLog
from rndc_bridge.sync.rndc_client import RndcClient

logger = logging.getLogger("rndc_bridge.api.queries")
router = APIRouter(tags=["Queries"])


@router.post("/query", response_model=QueryResult)
def run_query(
    payload: QueryRequest,
    transport: RndcClient = Depends(get_transport),
    _auth=Depends(require_auth),
):
    """Forwards a prebuilt query XML to the registry and returns the document fields it found."""
    return transport.query(payload.xml_request, payload.ws_url)


@router.post("/queries/execute", response_model=QueryExecuteResponse)
def execute_query(
    payload: QueryExecuteRequest,
    transport: RndcClient = Depends(get_transport),
    query_log: QueryLog = Depends(get_query_log),
    _auth=Depends(require_auth),
):
    """Sends a query and keeps it, with the registry answer, in the query history."""
    logged = query_log.create(payload)
    response = transport.send(payload.xml_request, payload.ws_url)
    logged = query_log.complete(logged.id, response)
    return QueryExecuteResponse(
        success=True,
        query=logged,
        response=RegistryAnswer(
            success=response.success, code=response.code, message=response.message, raw_xml=response.raw_xml
        ),
    )


@router.get("/queries", response_model=QueryListEnvelope)
def list_queries(
    query_type: Optional[str] = Query(None, alias="queryType"),
    limit: int = Query(50, ge=1, le=500),
    query_log: QueryLog = Depends(get_query_log),
):
    return QueryListEnvelope(success=True, queries=query_log.list_queries(limit=limit, query_type=query_type))


@router.get("/queries/{query_id}", response_model=QueryEnvelope)
def get_query(query_id: str, query_log: QueryLog = Depends(get_query_log)):
    logged = query_log.get(query_id)
    if logged is None:
        raise BatchNotFoundError(f"Consulta {query_id} no encontrada")
    return QueryEnvelope(success=True, query=logged)
