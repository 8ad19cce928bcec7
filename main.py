from app.main import run_server

if __name__ == "__main__":
    # The hosting environment may provide PORT; run_server falls back to 8080
    # and builds the controller first so an interrupted run resumes without
    # waiting for the first request.
    run_server()
