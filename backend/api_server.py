#!/usr/bin/env python3
"""
FastAPI server exposing scheduler status and risk controls to operators.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from riskloop import __version__

app = FastAPI(title="Risk Loop Operator API", version=__version__)

logger = logging.getLogger(__name__)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and return 500 with error details"""
    logger.error(f"Unhandled exception in {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "status": "error",
            "detail": str(exc),
            "path": str(request.url.path)
        }
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Registered by main.py before the server thread starts
loop_controller_instance: Optional[Any] = None


class CircuitBreakerUpdate(BaseModel):
    max_trade_usd: Optional[float] = None
    max_daily_loss_percent: Optional[float] = None
    max_drawdown_percent: Optional[float] = None
    max_open_positions: Optional[int] = None
    min_balance_usd: Optional[float] = None
    max_trade_balance_percent: Optional[float] = None
    max_consecutive_losses: Optional[int] = None
    halt_drawdown_percent: Optional[float] = None
    emergency_stop: Optional[bool] = None


class TripRequest(BaseModel):
    reason: str = "Tripped by operator"


def _controller():
    if loop_controller_instance is None:
        raise HTTPException(status_code=503, detail="Trading loop is not running")
    return loop_controller_instance


@app.get("/")
async def root():
    return {
        "message": "Risk Loop Operator API",
        "status": "running",
        "controller": loop_controller_instance is not None,
    }


@app.get("/api/scheduler/status")
def scheduler_status():
    """Scheduler counters and timing"""
    return _controller().scheduler_status().to_dict()


@app.post("/api/cycle/run")
def run_cycle():
    """Run one cycle now (skipped if a cycle is already in progress)"""
    summary = _controller().run_cycle_once()
    logger.info(f"Manual cycle {summary.cycle_number} requested via API (skipped={summary.skipped})")
    return summary.to_dict()


@app.get("/api/agents/{agent_id}/risk")
def agent_risk(agent_id: str):
    """Risk state of one agent"""
    state = _controller().get_agent_risk_status(agent_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Unknown agent: {agent_id}")
    return state.to_dict()


@app.get("/api/circuit-breaker")
def circuit_breaker_status():
    """Circuit breaker thresholds, emergency flag and tripped agents"""
    return _controller().circuit_breaker_status()


@app.put("/api/circuit-breaker/config")
def update_circuit_breaker(update: CircuitBreakerUpdate):
    """Partially update circuit breaker thresholds"""
    changes = update.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No settings provided")
    try:
        config = _controller().update_circuit_breaker_config(**changes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "success", "config": vars(config)}


@app.post("/api/agents/{agent_id}/trip")
def trip_agent(agent_id: str, request: Optional[TripRequest] = None):
    """Trip the circuit breaker for one agent"""
    reason = request.reason if request else "Tripped by operator"
    newly_tripped = _controller().trip_agent(agent_id, reason)
    return {"status": "success", "agent_id": agent_id, "newly_tripped": newly_tripped}


@app.post("/api/agents/{agent_id}/reset")
def reset_agent(agent_id: str):
    """Clear the tripped flag and daily-loss tracking for one agent"""
    _controller().reset_agent(agent_id)
    return {"status": "success", "agent_id": agent_id}


@app.post("/api/emergency-stop")
def emergency_stop():
    """Halt all new trading immediately"""
    _controller().emergency_stop_all()
    return {"status": "success", "emergency_stop": True}


@app.post("/api/resume")
def resume():
    """Clear the global emergency stop"""
    _controller().resume()
    return {"status": "success", "emergency_stop": False}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level="info")
