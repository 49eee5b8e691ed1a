import os

from .app import create_app

app = create_app()

if __name__ == "__main__":
    # Use PORT from environment or default to 5000
    port = int(os.environ.get("PORT", 5000))
    app.run(debug=os.environ.get("DEBUG", "false").lower() == "true", host='0.0.0.0', port=port)
