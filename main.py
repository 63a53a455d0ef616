"""
Splice Alt Backend Entry Point

Run with: uvicorn main:app --reload --port 8765
Or: python main.py
"""

from splice_alt.main import app

if __name__ == "__main__":
    import uvicorn
    from splice_alt.config import get_settings

    settings = get_settings()
    uvicorn.run("splice_alt.main:app", host=settings.host, port=settings.port, reload=True)
