import os
import uvicorn

if __name__ == "__main__":
    host = os.environ.get("CHATHUB_HOST", "localhost")
    port = int(os.environ.get("CHATHUB_PORT", "8000"))
    uvicorn.run(
        "chathub.server:app",
        host=host,
        port=port,
        log_level=os.environ.get("CHATHUB_LOG_LEVEL", "info"),
        reload=os.environ.get("CHATHUB_RELOAD", "0") == "1",
        reload_dirs=["chathub"],
    )
