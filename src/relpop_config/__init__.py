"""Runtime settings (env vars + dotenv) shared by the relpop packages."""
