"""
FastAPI REST API Server for the SYL-2381 Controller
Exposes parameter reads/writes and status flags over HTTP

Endpoints:
    GET  /health                    Liveness and link statistics
    GET  /api/registers             Register table (no bus traffic)
    GET  /api/parameters            Every readable parameter
    GET  /api/parameters/{name}     One parameter
    PUT  /api/parameters/{name}     Write one parameter
    GET  /api/status                Decoded AT status flags

Driver errors map to HTTP status codes:
    UnknownRegister                 404
    Access / value errors           400
    Timeout                         504
    Other protocol errors           502
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Dict, List, Optional, Any, Union
from dataclasses import asdict
from datetime import datetime, timezone
from enum import IntEnum
import threading
import logging

from protocols.modbus.exceptions import (
    ModbusError,
    RegisterError,
    Timeout,
    UnknownRegister,
)
from protocols.modbus.register_map import RegisterTable
from devices.syl2381 import Syl2381
from config import API_CONFIG, LOGGING_CONFIG

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="SYL-2381 Controller API",
    description="REST API for the Auber SYL-2381 PID temperature controller",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Global instances
controller: Optional[Syl2381] = None
_controller_lock = threading.Lock()

# ============================================================================
# Data Models
# ============================================================================

class RegisterInfo(BaseModel):
    name: str
    mnemonic: str
    table: str
    address: int
    access: str
    units: str = ""
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    choices: List[str] = []
    description: str = ""

class ParameterValue(BaseModel):
    name: str
    value: Any
    units: str = ""
    timestamp: str

class WriteRequest(BaseModel):
    value: Union[bool, float, str]

class StatusResponse(BaseModel):
    alarm1: bool
    anomaly: bool
    setting_mode: bool
    cooling_mode: bool
    manual_mode: bool
    autotune: bool
    timestamp: str

# ============================================================================
# Controller Dependency
# ============================================================================

def get_controller() -> Syl2381:
    """Shared controller client, created on first use."""
    global controller
    with _controller_lock:
        if controller is None:
            if API_CONFIG["simulate"]:
                from simulator import create_simulated_controller
                controller = create_simulated_controller()
                logger.info("API serving the simulated controller")
            else:
                controller = Syl2381.open_serial()
                logger.info(f"API serving {controller!r}")
        return controller

@app.on_event("shutdown")
def shutdown_event():
    """Close the serial link on shutdown"""
    global controller
    if controller is not None:
        controller.close()
        controller = None
        logger.info("Controller link closed")

def _jsonable(value: Any) -> Any:
    if isinstance(value, IntEnum):
        return value.name
    return value

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

def _http_error(error: ModbusError) -> HTTPException:
    if isinstance(error, UnknownRegister):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, RegisterError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, Timeout):
        return HTTPException(status_code=504, detail=str(error))
    logger.error(f"Controller error: {error}")
    return HTTPException(status_code=502, detail=str(error))

# ============================================================================
# Endpoints
# ============================================================================

@app.get("/health")
def health(pid: Syl2381 = Depends(get_controller)):
    """Service health and transaction counters"""
    return {
        "status": "healthy",
        "unit_id": pid.unit,
        "stats": pid.get_stats(),
        "timestamp": _now(),
    }

@app.get("/api/registers", response_model=List[RegisterInfo])
def list_registers(pid: Syl2381 = Depends(get_controller)):
    """Register table"""
    return [
        RegisterInfo(
            name=register.name,
            mnemonic=register.mnemonic,
            table="coil" if register.table == RegisterTable.COIL else "holding",
            address=register.address,
            access=register.access.value,
            units=register.units,
            minimum=register.minimum,
            maximum=register.maximum,
            choices=list(register.choices.__members__) if register.choices else [],
            description=register.description,
        )
        for register in pid.register_map
    ]

@app.get("/api/parameters")
def read_parameters(pid: Syl2381 = Depends(get_controller)) -> Dict[str, Any]:
    """Every readable parameter"""
    try:
        values = pid.dump()
    except ModbusError as e:
        raise _http_error(e)
    return {
        "values": {name: _jsonable(value) for name, value in values.items()},
        "timestamp": _now(),
    }

@app.get("/api/parameters/{name}", response_model=ParameterValue)
def read_parameter(name: str, pid: Syl2381 = Depends(get_controller)):
    """One parameter"""
    try:
        register = pid.register_map.resolve(name)
        value = pid.read(register)
    except ModbusError as e:
        raise _http_error(e)
    return ParameterValue(
        name=register.name,
        value=_jsonable(value),
        units=register.units,
        timestamp=_now(),
    )

@app.put("/api/parameters/{name}", response_model=ParameterValue)
def write_parameter(name: str, request: WriteRequest, pid: Syl2381 = Depends(get_controller)):
    """Write one parameter and return the value read back"""
    try:
        register = pid.register_map.resolve(name)
        value = request.value
        if isinstance(value, str):
            value = register.parse(value)
        pid.write(register, value)
        logger.info(f"{register.name} set to {value}")
        readback = pid.read(register)
    except ModbusError as e:
        raise _http_error(e)
    return ParameterValue(
        name=register.name,
        value=_jsonable(readback),
        units=register.units,
        timestamp=_now(),
    )

@app.get("/api/status", response_model=StatusResponse)
def read_status(pid: Syl2381 = Depends(get_controller)):
    """Controller status flags"""
    try:
        status = pid.get_status()
    except ModbusError as e:
        raise _http_error(e)
    return StatusResponse(**asdict(status), timestamp=_now())


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=LOGGING_CONFIG["level"], format=LOGGING_CONFIG["format"])
    uvicorn.run(app, host=API_CONFIG["host"], port=API_CONFIG["port"])
