"""
ASGI entrypoint: expose `app` pour les process managers / déploiements
(ex: `uvicorn rentals.asgi:app`). Toute la configuration est dans rentals.app_setup.
"""

from rentals.app import app
