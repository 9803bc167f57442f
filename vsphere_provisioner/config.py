"""
Configuration for the vSphere provisioner.

Reads from environment variables with sensible defaults.
"""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Provisioner settings loaded from environment."""
    
    # vCenter connection
    host: str = os.getenv("VCENTER_HOST", "vcenter.example.com")
    user: str = os.getenv("VCENTER_USER", "administrator@vsphere.local")
    password: str = os.getenv("VCENTER_PASSWORD", "")
    port: int = int(os.getenv("VCENTER_PORT", "443"))
    verify_ssl: bool = os.getenv("VCENTER_VERIFY_SSL", "false").lower() == "true"
    
    # Scope: the vSphere Datacenter this engine manages
    region: str = os.getenv("VSPHERE_REGION", "Datacenter")
    account_number: str = os.getenv("VSPHERE_ACCOUNT", "")
    vm_folder: Optional[str] = os.getenv("VSPHERE_VM_FOLDER") or None
    
    # Task and polling intervals (seconds)
    task_poll_seconds: float = float(os.getenv("VSPHERE_TASK_POLL", "2"))
    poll_interval_seconds: float = float(os.getenv("VSPHERE_POLL_INTERVAL", "10"))
    provision_timeout_seconds: float = float(os.getenv("VSPHERE_PROVISION_TIMEOUT", "1200"))
    power_off_grace_seconds: float = float(os.getenv("VSPHERE_POWER_OFF_GRACE", "15"))
    
    # Connection reaper
    reaper_poll_seconds: float = float(os.getenv("VSPHERE_REAPER_POLL", "5"))
    reaper_timeout_seconds: float = float(os.getenv("VSPHERE_REAPER_TIMEOUT", "1200"))
    
    # Host / resource pool cache
    cache_ttl_seconds: float = float(os.getenv("VSPHERE_CACHE_TTL", "900"))
    
    # Background termination workers
    background_workers: int = int(os.getenv("VSPHERE_BACKGROUND_WORKERS", "4"))
    
    # Guest customization
    default_subnet_mask: str = os.getenv("VSPHERE_DEFAULT_NETMASK", "255.255.252.0")
    
    # API server
    api_host: str = os.getenv("VSPHERE_API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("VSPHERE_API_PORT", "8010"))
    
    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    
    class Config:
        env_prefix = "VSPHERE_"


settings = Settings()
