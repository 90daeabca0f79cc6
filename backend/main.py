"""
CSV Insight Backend - FastAPI Application
CSV upload, AI-generated data summaries and per-topic chat about the data
"""
from csvinsight.app import create_app

app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
