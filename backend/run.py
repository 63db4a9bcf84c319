#!/usr/bin/env python3
# backend/run.py
"""
Development server runner for the scheduling engine.
For local development only - uses the in-memory idempotency store unless
IDEMPOTENCY_BACKEND says otherwise.
"""
import os
import sys
from pathlib import Path

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("IDEMPOTENCY_BACKEND", "memory")

import uvicorn

if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    print(f"Starting TutorHub scheduling engine on http://localhost:{port}")
    print(f"API Docs: http://localhost:{port}/docs")

    uvicorn.run("app.main:app", host="0.0.0.0", port=port, reload=True, log_level="info")
