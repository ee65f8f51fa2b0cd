# module rentals.app
from rentals.app_setup.factory import create_app

# App globale
app = create_app()
