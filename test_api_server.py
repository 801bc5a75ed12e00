"""
Test Suite for the SYL-2381 REST API Server
Tests endpoints and error mapping against the simulated controller
"""

import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent))

from api_server import app, get_controller
from simulator import create_simulated_controller


@pytest.fixture
def pid():
    return create_simulated_controller(unit_id=1, timeout_s=0.2)


@pytest.fixture
def client(pid):
    app.dependency_overrides[get_controller] = lambda: pid
    yield TestClient(app)
    app.dependency_overrides.clear()

# ============================================================================
# Test 1: Health Check
# ============================================================================

def test_health_check(client):
    """Test API health endpoint"""
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["unit_id"] == 1
    assert "total_requests" in data["stats"]

# ============================================================================
# Test 2: Register Table
# ============================================================================

def test_list_registers(client):
    response = client.get("/api/registers")

    assert response.status_code == 200
    registers = {r["name"]: r for r in response.json()}
    assert registers["setpoint"]["address"] == 0
    assert registers["setpoint"]["mnemonic"] == "SV"
    assert registers["current_temperature"]["access"] == "r"
    assert registers["status_flags"]["table"] == "coil"
    assert "K" in registers["input_type"]["choices"]

# ============================================================================
# Test 3: Parameter Reads
# ============================================================================

def test_read_all_parameters(client):
    response = client.get("/api/parameters")

    assert response.status_code == 200
    values = response.json()["values"]
    assert values["current_temperature"] == 23.5
    assert values["input_type"] == "K"
    assert values["baud_rate"] == "BAUD_9600"

def test_read_one_parameter(client):
    response = client.get("/api/parameters/setpoint")

    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "setpoint"
    assert data["value"] == 100.0
    assert data["units"] == "deg"

def test_unknown_parameter_is_404(client):
    response = client.get("/api/parameters/humidity")
    assert response.status_code == 404

# ============================================================================
# Test 4: Parameter Writes
# ============================================================================

def test_write_numeric_parameter(client, pid):
    response = client.put("/api/parameters/setpoint", json={"value": 72.5})

    assert response.status_code == 200
    assert response.json()["value"] == 72.5
    assert pid.get_setpoint() == 72.5

def test_write_enum_by_name(client):
    response = client.put("/api/parameters/display_unit", json={"value": "fahrenheit"})

    assert response.status_code == 200
    assert response.json()["value"] == "FAHRENHEIT"

def test_write_out_of_range_is_400(client, pid):
    response = client.put("/api/parameters/setpoint", json={"value": 12000})

    assert response.status_code == 400
    assert pid.transport.requests == []

def test_write_read_only_is_400(client):
    response = client.put("/api/parameters/current_temperature", json={"value": 30})
    assert response.status_code == 400

def test_device_exception_is_502(client):
    """OUT is refused by the controller while CV = 0"""
    response = client.put("/api/parameters/output_percent", json={"value": 50})
    assert response.status_code == 502

def test_timeout_is_504(client, pid):
    pid.transport.drop_responses = True
    response = client.get("/api/parameters/setpoint")
    assert response.status_code == 504

# ============================================================================
# Test 5: Status Flags
# ============================================================================

def test_status(client, pid):
    pid.transport.slave.node.set_temperature(130.0)

    response = client.get("/api/status")

    assert response.status_code == 200
    data = response.json()
    assert data["alarm1"] is True
    assert data["cooling_mode"] is False
    assert "timestamp" in data
