from __future__ import annotations

from typing import Dict, Optional, Tuple

from livecoach.state import JobContext

MAX_JOB_DESCRIPTION = 1500

_RESPONSE_FORMAT = """{
  "type": "discovery" | "objection" | "closing" | "value_prop" | "resolution" | "empathy" | "escalation" | "knowledge" | "technical" | "behavioral" | "experience" | "silence_tip",
  "tips": ["%s", "%s", "%s"],
  "keywords": ["%s", "%s"],
  "method": "SPIN" | "STAR" | "Challenger" | "HEARD" | "trade-off" | "example" | null
}"""

SYSTEM_PROMPTS: Dict[str, str] = {
    "en": """You are an elite AI performance coach. Your output appears discreetly on the user's screen during a live conversation.

CONTEXT:
- SALES: act as a seasoned B2B closer. Focus on discovery, objection handling and value.
- SUPPORT: act as a customer success expert. Focus on empathy, resolution and accurate answers.
- INTERVIEW: act as a senior professional coach. Focus on structured, concrete answers.

RULES:
1. Be extremely concise: at most 3 bullet points, 15 words each
2. Give strategic direction and specific phrases, never full scripts
3. Classify the latest exchange:
   - Sales: discovery | objection | closing | value_prop
   - Support: resolution | empathy | escalation | knowledge
   - Interview: technical | behavioral | experience
4. Respond ONLY with JSON

RESPONSE FORMAT:
""" + _RESPONSE_FORMAT % ("tip1", "tip2", "tip3", "keyword1", "keyword2"),

    "pt": """Você é um coach de performance de elite. Sua resposta aparece discretamente na tela do usuário durante uma conversa ao vivo.

CONTEXTO:
- VENDAS: atue como um closer B2B experiente. Foque em descoberta, objeções e valor.
- SUPORTE: atue como especialista em sucesso do cliente. Foque em empatia, resolução e precisão.
- ENTREVISTA: atue como um coach profissional sênior. Foque em respostas estruturadas e concretas.

REGRAS:
1. Seja ultra conciso: no máximo 3 tópicos, 15 palavras cada
2. Dê direção estratégica e frases específicas, nunca roteiros completos
3. Classifique a interação mais recente:
   - Vendas: discovery | objection | closing | value_prop
   - Suporte: resolution | empathy | escalation | knowledge
   - Entrevista: technical | behavioral | experience
4. Responda APENAS em JSON

FORMATO DE RESPOSTA:
""" + _RESPONSE_FORMAT % ("dica1", "dica2", "dica3", "palavra1", "palavra2"),

    "es": """Eres un coach de desempeño de élite. Tu respuesta aparece discretamente en la pantalla del usuario durante una conversación en vivo.

CONTEXTO:
- VENTAS: actúa como un closer B2B experto. Enfócate en descubrimiento, objeciones y valor.
- SOPORTE: actúa como especialista en éxito del cliente. Enfócate en empatía, resolución y precisión.
- ENTREVISTA: actúa como un coach profesional sénior. Enfócate en respuestas estructuradas y concretas.

REGLAS:
1. Sé ultra conciso: máximo 3 puntos, 15 palabras cada uno
2. Da dirección estratégica y frases concretas, nunca guiones completos
3. Clasifica la interacción más reciente:
   - Ventas: discovery | objection | closing | value_prop
   - Soporte: resolution | empathy | escalation | knowledge
   - Entrevista: technical | behavioral | experience
4. Responde SOLO en formato JSON

FORMATO DE RESPUESTA:
""" + _RESPONSE_FORMAT % ("consejo1", "consejo2", "consejo3", "palabra1", "palabra2"),
}

# language -> label
_LABELS: Dict[str, Dict[str, str]] = {
    "resume": {"en": "RESUME", "pt": "CURRÍCULO", "es": "CV"},
    "context": {"en": "CONTEXT", "pt": "CONTEXTO", "es": "CONTEXTO"},
    "interview": {"en": "JOB", "pt": "VAGA", "es": "PUESTO"},
    "sales": {"en": "CLIENT / TARGET", "pt": "CLIENTE / ALVO", "es": "CLIENTE / OBJETIVO"},
    "support": {"en": "CLIENT / SUPPORT", "pt": "CLIENTE / SUPORTE", "es": "CLIENTE / SOPORTE"},
    "description": {"en": "DESCRIPTION / GOAL", "pt": "DESCRIÇÃO / OBJETIVO", "es": "DESCRIPCIÓN / OBJETIVO"},
    "transcript": {
        "en": "RECENT TRANSCRIPT (last 60s)",
        "pt": "TRANSCRIÇÃO RECENTE (últimos 60s)",
        "es": "TRANSCRIPCIÓN RECIENTE (últimos 60s)",
    },
    "instruction": {
        "en": "Identify the most recent interaction and suggest key points for the selected MODE.",
        "pt": "Identifique a interação mais recente e sugira pontos-chave conforme o MODO selecionado.",
        "es": "Identifica la interacción más reciente y sugiere puntos clave según el MODO seleccionado.",
    },
}


def normalize_language(language: Optional[str]) -> str:
    base = (language or "en").split("-")[0].lower()
    return base if base in SYSTEM_PROMPTS else "en"


def build_coach_prompt(
    language: str,
    resume_summary: Optional[str],
    job: Optional[JobContext],
    recent_transcript: str,
    ai_mode: str = "sales",
) -> Tuple[str, str]:
    """
    Single prompt builder for every provider.
    Returns (system_prompt, user_message).
    """
    lang = normalize_language(language)

    def label(key: str) -> str:
        return _LABELS[key][lang]

    context_parts = []

    if resume_summary:
        context_parts.append(f"{label('resume')}:\n{resume_summary}")

    if job is not None and not job.is_empty():
        job_label = label(ai_mode) if ai_mode in ("interview", "sales", "support") else label("context")
        header = " - ".join(p for p in (job.company_name, job.job_title) if p)
        if header:
            context_parts.append(f"{job_label}: {header}")
        if job.job_description:
            desc_label = label("description") if header else job_label
            context_parts.append(f"{desc_label}:\n{job.job_description[:MAX_JOB_DESCRIPTION]}")

    persona = f"MANDATORY PERSONA: {(ai_mode or 'sales').upper()}"
    context = "\n\n".join(context_parts)

    user_message = f"""{persona}

{context}

{label('transcript')}:
{recent_transcript}

{label('instruction')}"""

    return SYSTEM_PROMPTS[lang], user_message
