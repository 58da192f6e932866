"""Prompt text sent to the remote models."""
from __future__ import annotations

DEFAULT_PROMPT = """Actúa como un escáner de realidad aumentada avanzado. Tu objetivo es detectar "capas ocultas" sobre la realidad física.
1. ANALIZA la imagen proporcionada: Identifica la geometría de la habitación, las superficies planas (mesas, suelos), la iluminación actual y los objetos visibles.
2. GENERA una 'Entidad Invisible' que se integre FÍSICAMENTE en este entorno.
   - Si hay una mesa, la entidad debe estar apoyada en ella.
   - Si hay una esquina oscura, la entidad debe estar escondida allí.
   - La iluminación de la entidad debe coincidir con la de la foto.
3. NO inventes un escenario de fantasía aleatorio. La descripción debe sonar creíble y estar ANCLADA a lo que ves en la cámara.
Responde ÚNICAMENTE en JSON válido según el esquema."""

DEFAULT_EXCLUSIONS = "texto, marcas de agua, cartoon, dibujo, baja calidad, borroso"

NO_EXCLUSIONS = "Ninguno"

_VISUALIZATION_TEMPLATE = """Fotografía macro realista o plano medio cinematográfico.
Objeto: {description}.
Estilo y Materiales: {visual_style}.
CONTEXTO: El objeto debe parecer real, tangible y físico.
Iluminación: Coherente con una fotografía real (sombras, reflejos, texturas).
IMPORTANTE - EXCLUSIONES (NEGATIVE PROMPT): {exclusions}.
NO generes: texto, marcos, dibujos animados, arte conceptual plano, ni nada listado en las exclusiones. Debe parecer una foto real de un fenómeno extraño."""


def build_visualization_prompt(description: str, visual_style: str, exclusions: str) -> str:
    """Render the image generation instruction for one entity."""
    return _VISUALIZATION_TEMPLATE.format(
        description=description,
        visual_style=visual_style,
        exclusions=exclusions.strip() or NO_EXCLUSIONS,
    )


__all__ = ["DEFAULT_PROMPT", "DEFAULT_EXCLUSIONS", "NO_EXCLUSIONS", "build_visualization_prompt"]
