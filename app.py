"""Application entry point for the High Street Gym web UI and API."""

from highstreetgym.webapp import create_app


app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
