from __future__ import annotations

from pharmadash.core.application import create_application

# Instância global para uvicorn: `uvicorn pharmadash.main:app --reload`
app = create_application()
