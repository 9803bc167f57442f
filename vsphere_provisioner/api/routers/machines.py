"""
Virtual machine endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from vsphere_provisioner.api.deps import get_engine
from vsphere_provisioner.engine import ProvisioningEngine
from vsphere_provisioner.models.machine import (
    Architecture,
    CloneRequest,
    LaunchSpec,
    MachineListResponse,
    MachineProduct,
    PowerRequest,
    ProvisionedMachine,
    ResizeRequest,
)

router = APIRouter(prefix="/v1", tags=["machines"])


@router.get("/machines", response_model=MachineListResponse)
def list_machines(engine: ProvisioningEngine = Depends(get_engine)):
    """List all virtual machines in the region."""
    machines = engine.list_machines()
    return MachineListResponse(machines=machines, count=len(machines))


@router.get("/machines/{machine_id}", response_model=ProvisionedMachine)
def get_machine(machine_id: str, engine: ProvisioningEngine = Depends(get_engine)):
    machine = engine.get_machine(machine_id)
    if machine is None:
        raise HTTPException(status_code=404, detail=f"Machine '{machine_id}' not found")
    return machine


@router.post("/machines", response_model=ProvisionedMachine, status_code=201)
def provision_machine(spec: LaunchSpec, engine: ProvisioningEngine = Depends(get_engine)):
    """
    Provision a VM from a template uuid or a guest OS identifier.
    
    Blocks until vCenter reports the VM and it has been powered on.
    """
    return engine.provision(spec)


@router.post("/machines/{machine_id}/power", status_code=204)
def change_power_state(machine_id: str, request: PowerRequest, engine: ProvisioningEngine = Depends(get_engine)):
    engine.change_power_state(machine_id, request.target)


@router.post("/machines/{machine_id}/resize", response_model=ProvisionedMachine)
def resize_machine(machine_id: str, request: ResizeRequest, engine: ProvisioningEngine = Depends(get_engine)):
    return engine.resize(machine_id, request.cpu_count, request.memory_mb)


@router.post("/machines/{machine_id}/clone", response_model=ProvisionedMachine, status_code=201)
def clone_machine(machine_id: str, request: CloneRequest, engine: ProvisioningEngine = Depends(get_engine)):
    return engine.clone_machine(machine_id, request.name, request.destination, request.power_on)


@router.delete("/machines/{machine_id}", status_code=202)
def terminate_machine(machine_id: str, engine: ProvisioningEngine = Depends(get_engine)):
    """Schedule power off and destroy. Failures are logged, not returned."""
    engine.terminate(machine_id)
    return {"status": "terminating", "machine_id": machine_id}


@router.get("/products", response_model=List[MachineProduct])
def list_products(
    architecture: Architecture = Query(Architecture.I64, description="Guest architecture"),
    engine: ProvisioningEngine = Depends(get_engine)
):
    return engine.list_products(architecture)
