import os
from pathlib import Path

from flask import Flask
from flask_sqlalchemy import SQLAlchemy

from flask_passkeys import Passkeys, SQLAlchemyStorageAdapter


def env_or(key, fallback):
    return os.environ.get(key) or fallback


app = Flask(__name__)
app.config["SECRET_KEY"] = env_or("SECRET_KEY", "dev-secret-change-in-production")
app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite:///" + str(Path(env_or("DB_PATH", "./auth.db")).resolve())
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

app.config["PASSKEYS_RP_ID"] = env_or("RP_ID", "localhost")
app.config["PASSKEYS_RP_NAME"] = env_or("RP_DISPLAY_NAME", "Passkey Demo")
app.config["PASSKEYS_ORIGIN"] = env_or("RP_ORIGIN", "http://localhost:3000")
app.config["PASSKEYS_LOGIN_CORRELATION"] = env_or("LOGIN_CORRELATION", "shared")

db = SQLAlchemy(app)

with app.app_context():
    storage = SQLAlchemyStorageAdapter(db.session)
    passkeys = Passkeys(app, storage_adapter=storage)


if __name__ == "__main__":
    port = int(env_or("PORT", "8080"))
    app.logger.info(f"Server starting on port {port}...")
    app.run(host="0.0.0.0", port=port, threaded=True)
