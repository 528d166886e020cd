from roofedit.app import create_app

app = create_app()


if __name__ == "__main__":
    debug = app.config.get("DEBUG", False)
    # Edit sessions and their autosave timers live in this process
    app.run(debug=debug, threaded=False)
