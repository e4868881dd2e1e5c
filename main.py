"""
Main entry point for the VestLedger RSU tracking service.
"""

from vestledger import create_app
import os

app = create_app()

if __name__ == "__main__":
    # Get port from environment or use default
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV') == 'development'

    print(f"\nVestLedger API starting at: http://127.0.0.1:{port}/api")
    print("Press CTRL+C to quit\n")

    app.run(host='0.0.0.0', port=port, debug=debug)
