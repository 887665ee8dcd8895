#!/usr/bin/env python3
# backend/run.py
"""Development server runner."""

import uvicorn

if __name__ == "__main__":
    uvicorn.run("tutorbook.main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
