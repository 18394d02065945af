"""
Application FastAPI : point d'entrée
====================================

Rôle
----
- Instancie l'app FastAPI, configure le logging et le CORS pour le front,
- Monte tous les routeurs (REST + WebSocket),
- Journalise la configuration LLM et la liste des routes au démarrage,
- Annule les timers de rounds et ferme les sockets à l'arrêt.

Notes
-----
- Les importations des routeurs sont explicites pour éviter les surprises d’auto-discovery.
- `settings.ALLOWED_ORIGINS` doit rester en phase avec les URLs du front.
- ⚠️ Le middleware CORS doit être ajouté AVANT les include_router.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Imports directs des routeurs (robuste, évite le lookup de sous-modules)
from app.routes.admin import router as admin_router
from app.routes.ai import router as ai_router
from app.routes.auth_admin import router as auth_admin_router
from app.routes.games import router as games_router
from app.routes.health import router as health_router
from app.routes.rounds import router as rounds_router
from app.routes.websocket import router as ws_router
from app.services.round_engine import drop_all_round_engines
from app.services.ws_manager import WS

from app.config.settings import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Au démarrage: journalise la config LLM et les routes (diagnostic).
    À l'arrêt: coupe les timers de rounds et ferme les sockets encore ouvertes.
    """
    logger.info("LLM config: provider=%s model=%s", settings.LLM_PROVIDER, settings.LLM_MODEL)
    for r in app.routes:
        methods = getattr(r, "methods", None)
        logger.debug("route %s %s", getattr(r, "path", r), sorted(methods) if methods else "")
    yield
    drop_all_round_engines()
    await WS.close_all()


# --- App FastAPI principale  ---
app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# ===========================
# CORS
# ===========================
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,  # ← whitelist des frontends autorisés
    allow_credentials=True,                   # ← nécessaire pour le cookie admin
    allow_methods=["*"],
    allow_headers=["*"],                      # ← dont Authorization et X-Host-Key
)

# ===========================
# Montage des routers
# ===========================
# ⚠️ Les protections (admin / hôte) restent au niveau DES ROUTES,
#    pour ne pas bloquer les préflights OPTIONS.
app.include_router(auth_admin_router)
app.include_router(games_router)
app.include_router(rounds_router)
app.include_router(ai_router)
app.include_router(ws_router)                  # WebSocket endpoint (/ws/games/{game_id})
app.include_router(health_router)
app.include_router(admin_router)


# --- Racine utile pour "ping" simple (sans /health) ---
@app.get("/")
async def root():
    """Ping basique : permet de vérifier que l'app tourne (sans dépendance LLM)."""
    return {"ok": True, "service": "manipulation-factory-backend"}
