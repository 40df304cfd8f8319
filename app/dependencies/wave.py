from app.services.wave_client import WaveClient, WaveClientFactory


def get_wave_client_factory() -> WaveClientFactory:
    """FastAPI dependency returning how to build a Wave client from a user's API key."""
    return WaveClient
