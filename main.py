import uvicorn

from twofactor.main import app  # noqa: F401

if __name__ == "__main__":
    uvicorn.run("twofactor.main:app", host="0.0.0.0", port=8000, reload=False)
