"""Dépendances partagées pour les routes de l'API.

Les routes récupèrent le conteneur attaché à l'application (`app.state.container`) plutôt que le
singleton de module, ce qui permet aux tests de monter une application sur un conteneur dédié.
"""

from fastapi import Request

from ..core.container import Container


def get_container(request: Request) -> Container:
    """Retourne le conteneur de l'application courante."""
    return request.app.state.container
