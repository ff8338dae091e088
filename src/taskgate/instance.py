"""Instance identity and worker naming."""

import logging
import os
import socket
from uuid import uuid4

logger = logging.getLogger(__name__)

DEFAULT_INSTANCE_ID = "taskgate-1"


def detect_instance_id() -> str:
    """
    Auto-detect a unique instance identifier from the environment.

    Checks in priority order:
    1. TASKGATE_INSTANCE_ID (explicitly set, non-default)
    2. Fly.io: FLY_ALLOC_ID
    3. Kubernetes: HOSTNAME when it looks like a pod name
    4. Cloud Run: K_REVISION plus a random suffix
    5. Fallback: hostname plus a random suffix

    The result prefixes every worker's lock name, so two processes sharing
    one id could release each other's locks on restart.
    """
    explicit_id = os.environ.get("TASKGATE_INSTANCE_ID")
    if explicit_id and explicit_id != DEFAULT_INSTANCE_ID:
        logger.info(f"Using explicit instance ID: {explicit_id}")
        return explicit_id

    fly_alloc_id = os.environ.get("FLY_ALLOC_ID")
    if fly_alloc_id:
        logger.info(f"Detected Fly.io instance: {fly_alloc_id}")
        return fly_alloc_id

    k8s_hostname = os.environ.get("HOSTNAME")
    if k8s_hostname and "-" in k8s_hostname:
        logger.info(f"Detected Kubernetes instance: {k8s_hostname}")
        return k8s_hostname

    cloud_run_revision = os.environ.get("K_REVISION")
    if cloud_run_revision:
        instance_id = f"{cloud_run_revision}-{str(uuid4())[:8]}"
        logger.info(f"Detected Cloud Run instance: {instance_id}")
        return instance_id

    try:
        instance_id = f"{socket.gethostname()}-{str(uuid4())[:8]}"
    except OSError as e:
        instance_id = f"taskgate-{uuid4()}"
        logger.error(f"Failed to detect hostname, using random ID: {instance_id} (error: {e})")
        return instance_id

    logger.warning(f"No deployment environment detected, using fallback: {instance_id}")
    return instance_id


def worker_id_for(instance_id: str, index: int) -> str:
    """Lock name used by worker ``index`` of this instance."""
    return f"{instance_id}-worker-{index}"
