from __future__ import annotations
import uuid


def new_job_id() -> str:
    # uuid4: collision-resistant, also safe as a directory name
    return uuid.uuid4().hex
