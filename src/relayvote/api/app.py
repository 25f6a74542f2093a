"""Relayer HTTP API.

Endpoints:
    POST /api/submit-vote      queue a signed vote intent
    GET  /api/health           relayer identity, balance, network, queue length
    GET  /api/queue            pending intents and recent drain outcomes
    GET  /api/queue/{ticket}   status of one submission
    GET  /api/election         election view (?voter= adds the caller's status)

Submission answers as soon as the intent is queued; settlement happens
on the relayer's drain thread.

Run with any ASGI server, e.g.
    uvicorn --factory relayvote.api.app:create_app_from_env
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from relayvote import __version__
from relayvote.service import VotingService


class VoteIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    voter: str
    candidate_id: Union[int, str] = Field(alias="candidateId")
    election_id: Union[int, str] = Field(alias="electionId")
    nonce: Union[int, str]
    deadline: Union[int, str]


class SubmitVoteIn(BaseModel):
    vote: VoteIn
    signature: str


class SubmitVoteOut(BaseModel):
    success: bool
    message: str
    ticket: str
    voter: str
    candidate_id: int = Field(serialization_alias="candidateId")


def create_app(service: VotingService) -> FastAPI:
    app = FastAPI(title="relayvote relayer", version=__version__)
    app.state.service = service

    @app.exception_handler(RequestValidationError)
    async def invalid_structure(req: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid vote structure", "details": _safe_errors(exc)},
        )

    @app.post("/api/submit-vote", response_model=SubmitVoteOut, response_model_by_alias=True)
    def submit_vote(payload: SubmitVoteIn) -> Any:
        body = {
            "vote": payload.vote.model_dump(by_alias=True),
            "signature": payload.signature,
        }
        result = service.submit_signed_vote(body)
        if not result.success:
            return JSONResponse(status_code=400, content={"error": "; ".join(result.errors)})
        return SubmitVoteOut(
            success=True,
            message=result.data["message"],
            ticket=result.data["ticket"],
            voter=result.data["voter"],
            candidate_id=result.data["candidate_id"],
        )

    @app.get("/api/health")
    def health() -> Any:
        result = service.relayer_health()
        if not result.success:
            return JSONResponse(status_code=500, content={"error": "; ".join(result.errors)})
        return result.data

    @app.get("/api/queue")
    def queue() -> Dict[str, Any]:
        return service.queue_status()

    @app.get("/api/queue/{ticket}")
    def queue_ticket(ticket: str) -> Any:
        result = service.ticket_status(ticket)
        if not result.success:
            return JSONResponse(status_code=404, content={"error": "; ".join(result.errors)})
        return result.data

    @app.get("/api/election")
    def election(voter: Optional[str] = None) -> Any:
        result = service.election_view(caller=voter)
        if not result.success:
            status = 404 if service.ledger is None else 400
            return JSONResponse(status_code=status, content={"error": "; ".join(result.errors)})
        return result.data

    return app


def create_app_from_env() -> FastAPI:
    """Build the app from environment configuration (see relayvote.config)."""
    from relayvote.cli import build_service_from_env

    return create_app(build_service_from_env())


def _safe_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
        for e in exc.errors()
    ]
