"""Hello — the smallest perch app.

Two routes and permissive CORS so a front end on another origin can talk
to it during development.

Run:
    cd examples/hello && python app.py
"""

from perch import App
from perch.middleware import CORSConfig, CORSMiddleware

app = App()
app.add_middleware(CORSMiddleware(CORSConfig.permissive()))


@app.get("/")
def index() -> str:
    return "Hello, world!"


@app.post("/login")
def login() -> str:
    return "Login attempt"


if __name__ == "__main__":
    app.run()
