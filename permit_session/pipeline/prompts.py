"""
FILE: permit_session/pipeline/prompts.py

Outbound wording for the intake dialogue and the recovery scripts.
Everything user-facing is Spanish; builders return OutboundMessage values
so transports decide how to render numbered options.
"""

from typing import Dict, List, Optional

from permit_session.pipeline.schemas import (
    FIELD_ORDER,
    CompletionStatus,
    FieldKey,
    OutboundMessage,
    Session,
)

# ================================================================================
# FIELD WORDING
# ================================================================================

FIELD_LABELS: Dict[FieldKey, str] = {
    FieldKey.NOMBRE_COMPLETO: "Nombre completo",
    FieldKey.CURP_RFC: "CURP o RFC",
    FieldKey.DOMICILIO: "Domicilio",
    FieldKey.EMAIL: "Correo electrónico",
    FieldKey.MARCA: "Marca",
    FieldKey.LINEA: "Línea o modelo",
    FieldKey.COLOR: "Color",
    FieldKey.NUMERO_SERIE: "Número de serie (VIN)",
    FieldKey.NUMERO_MOTOR: "Número de motor",
    FieldKey.ANO_MODELO: "Año del modelo",
}

FIELD_QUESTIONS: Dict[FieldKey, str] = {
    FieldKey.NOMBRE_COMPLETO: "👤 ¿Cuál es tu nombre completo (nombre y apellidos)?",
    FieldKey.CURP_RFC: "🆔 ¿Cuál es tu CURP o RFC?",
    FieldKey.DOMICILIO: "📍 ¿Cuál es tu domicilio completo?",
    FieldKey.EMAIL: "📧 ¿Cuál es tu correo electrónico?",
    FieldKey.MARCA: "🚗 ¿Cuál es la marca del vehículo?",
    FieldKey.LINEA: "🚙 ¿Cuál es la línea o modelo del vehículo?",
    FieldKey.COLOR: "🎨 ¿De qué color es el vehículo?",
    FieldKey.NUMERO_SERIE: "🔢 ¿Cuál es el número de serie (VIN)?",
    FieldKey.NUMERO_MOTOR: "⚙️ ¿Cuál es el número de motor?",
    FieldKey.ANO_MODELO: "📅 ¿De qué año es el modelo?",
}

FIELD_EXAMPLES: Dict[FieldKey, str] = {
    FieldKey.NOMBRE_COMPLETO: "Juan Carlos Pérez González",
    FieldKey.CURP_RFC: "PERJ850124HDFRZN01",
    FieldKey.DOMICILIO: "Calle Juárez 123, Centro, Guadalajara, Jalisco",
    FieldKey.EMAIL: "juan@gmail.com",
    FieldKey.MARCA: "Toyota, Nissan, Ford",
    FieldKey.LINEA: "Corolla, Sentra, F-150",
    FieldKey.COLOR: "Azul, Rojo/Negro, Blanco y Verde",
    FieldKey.NUMERO_SERIE: "1HGCM82633A123456",
    FieldKey.NUMERO_MOTOR: "HR16123456",
    FieldKey.ANO_MODELO: "2020",
}

MORE_EXAMPLES: Dict[FieldKey, List[str]] = {
    FieldKey.NOMBRE_COMPLETO: ["María López Hernández", "José Luis Ramírez"],
    FieldKey.CURP_RFC: ["CURP: GOPA123456HDFRRL09", "RFC: PERJ850124X91"],
    FieldKey.DOMICILIO: ["Av. Reforma 222, Juárez, CDMX", "Calle 5 de Mayo 10, Centro, Puebla"],
    FieldKey.EMAIL: ["maria.lopez@hotmail.com", "jose_r@outlook.com"],
    FieldKey.MARCA: ["Chevrolet", "Volkswagen", "Honda"],
    FieldKey.LINEA: ["Aveo", "Jetta", "Civic"],
    FieldKey.COLOR: ["Gris plata", "Negro", "Rojo y Blanco"],
    FieldKey.NUMERO_SERIE: ["3N1AB7AP5HY123456", "Está en la tarjeta de circulación o en el tablero"],
    FieldKey.NUMERO_MOTOR: ["CBR600123", "Está en la factura o en el bloque del motor"],
    FieldKey.ANO_MODELO: ["2018", "2023"],
}

GENERIC_EXAMPLE = "💡 Revisa el formato solicitado"
GENERIC_VALIDATION_MESSAGE = "No pudimos entender ese dato. Inténtalo de nuevo."

# ================================================================================
# MENUS
# ================================================================================

MAIN_MENU_OPTIONS = [
    ("1", "📝 Nuevo permiso"),
    ("2", "♻️ Renovar permiso"),
    ("3", "📊 Ver estado de mi solicitud"),
    ("4", "❓ Ayuda"),
    ("5", "🔒 Aviso de privacidad"),
]


def welcome() -> OutboundMessage:
    return OutboundMessage.plain(
        "👋 ¡Hola! Te ayudo a tramitar tu permiso de circulación por WhatsApp."
    )


def main_menu() -> OutboundMessage:
    return OutboundMessage.choices("🏠 *Menú principal*\n¿Qué deseas hacer?", MAIN_MENU_OPTIONS)


def renewal_menu() -> OutboundMessage:
    return OutboundMessage.choices(
        "♻️ *Renovación*",
        [("1", "Renovar un permiso"), ("2", "Elegir de mis permisos"), ("3", "Menú principal")],
    )


def privacy_menu() -> OutboundMessage:
    return OutboundMessage.choices(
        "🔒 *Aviso de privacidad*\nTus datos se usan solo para tramitar tu permiso.",
        [("1", "Dar consentimiento"), ("2", "Ver aceptación"), ("3", "Menú principal")],
    )


def status_report(status: CompletionStatus) -> OutboundMessage:
    if status.is_complete:
        body = "📊 Tu solicitud tiene todos los datos completos."
    elif status.completed == 0:
        body = "📊 Aún no tienes una solicitud en curso."
    else:
        body = (
            f"📊 Llevas {status.completed} de {status.total} datos "
            f"({status.percentage}%)."
        )
    return OutboundMessage.choices(
        body,
        [("1", "Crear permiso"), ("2", "Renovar"), ("3", "Menú principal")],
    )


def help_text(context: str, support_email: str, support_web_url: str) -> OutboundMessage:
    lines = ["❓ *Ayuda*"]
    if context == "form_help":
        lines.append("Responde cada pregunta con el dato solicitado. Puedes escribir *atrás* para regresar.")
    elif context == "payment_help":
        lines.append("El enlace de pago se envía cuando confirmas tus datos.")
    else:
        lines.append("Escribe *menu* en cualquier momento para volver al inicio.")
    lines.append(f"📧 {support_email}")
    lines.append(f"🌐 {support_web_url}")
    lines.append("Escribe *continue* para seguir donde estabas.")
    return OutboundMessage.plain("\n".join(lines))


def portal_only(support_web_url: str) -> OutboundMessage:
    return OutboundMessage.plain(
        f"🌐 Esta opción se atiende en el portal: {support_web_url}"
    )

# ================================================================================
# FORM
# ================================================================================

def ask_field(field: FieldKey, status: Optional[CompletionStatus] = None) -> OutboundMessage:
    lines = []
    if status is not None and status.completed:
        lines.append(f"({status.completed}/{status.total})")
    lines.append(FIELD_QUESTIONS[field])
    lines.append(f"Ejemplo: {FIELD_EXAMPLES[field]}")
    return OutboundMessage.plain("\n".join(lines))


def fields_saved(fields: List[FieldKey]) -> OutboundMessage:
    labels = ", ".join(FIELD_LABELS[field] for field in fields)
    return OutboundMessage.plain(f"✓ Guardado: {labels}")


def progress_saved() -> OutboundMessage:
    return OutboundMessage.plain("💾 Tu progreso está guardado. Escribe cuando quieras continuar.")


def confirmation_summary(session: Session) -> OutboundMessage:
    lines = ["✅ *Revisa tus datos*", ""]
    for field in FIELD_ORDER:
        lines.append(f"{FIELD_LABELS[field]}: {session.data.get_field(field) or '-'}")
    email = session.data.get_field(FieldKey.EMAIL)
    if email:
        lines.append(f"{FIELD_LABELS[FieldKey.EMAIL]}: {email}")
    return OutboundMessage.choices(
        "\n".join(lines),
        [("1", "Confirmar"), ("2", "Editar un dato"), ("3", "Cancelar")],
    )


def field_edit_menu() -> OutboundMessage:
    options = [(str(i), FIELD_LABELS[field]) for i, field in enumerate(FIELD_ORDER, start=1)]
    return OutboundMessage.choices(
        "✏️ ¿Qué dato quieres corregir?\nEjemplo: \"4 Toyota\" para cambiar la marca",
        options,
    )


def payment_pending() -> OutboundMessage:
    return OutboundMessage.choices(
        "💳 Tus datos están confirmados. En breve recibirás el enlace de pago.",
        [("1", "Pagar"), ("2", "Menú principal")],
    )


def payment_requested() -> OutboundMessage:
    return OutboundMessage.plain("💳 Estamos generando tu enlace de pago. Te lo enviaremos por este medio.")


def cancelled() -> OutboundMessage:
    return OutboundMessage.plain("❌ Solicitud cancelada. Escribe cualquier mensaje para empezar de nuevo.")


def invalid_option(expected: List[str]) -> str:
    shown = ", ".join(expected[:10])
    return f"Opción no válida. Opciones disponibles: {shown}"

# ================================================================================
# RECOVERY
# ================================================================================

def field_example_line(field: Optional[FieldKey]) -> str:
    if field is None:
        return GENERIC_EXAMPLE
    return f"📝 Ejemplo: {FIELD_EXAMPLES[field]}"


def more_examples(field: FieldKey) -> OutboundMessage:
    lines = [f"📝 Más ejemplos de {FIELD_LABELS[field]}:"]
    lines.extend(f"• {example}" for example in MORE_EXAMPLES[field])
    lines.append("")
    lines.append(FIELD_QUESTIONS[field])
    return OutboundMessage.plain("\n".join(lines))


def support_contact(support_email: str, support_web_url: str) -> OutboundMessage:
    return OutboundMessage.plain(
        f"📞 *Soporte*\n📧 {support_email}\n🌐 {support_web_url}\n\n"
        "Cuando quieras, responde la pregunta pendiente para continuar."
    )


def recovery_corrupted(error_id: str) -> OutboundMessage:
    return OutboundMessage.choices(
        f"🔧 *Error en tu sesión* ({error_id})\n\n"
        "Tuvimos que reiniciar tu sesión por seguridad.\n*¿Qué deseas hacer?*",
        [("1", "Recuperar mi solicitud"), ("2", "Empezar de nuevo"), ("3", "Contactar soporte")],
    )


def recovery_menu(error_id: Optional[str]) -> OutboundMessage:
    return recovery_corrupted(error_id or "-")


def recovery_store(error_id: str, wait_minutes: int, support_web_url: str) -> OutboundMessage:
    return OutboundMessage.choices(
        f"⚠️ *Problema temporal* ({error_id})\n\n"
        "Estamos experimentando problemas técnicos.\n"
        f"*Tu progreso está guardado.* Intenta de nuevo en {wait_minutes} min.",
        [
            ("1", "Reintentar más tarde"),
            ("2", f"Continuar en {support_web_url}"),
            ("3", "Contactar soporte si persiste"),
        ],
    )


def recovery_restored() -> OutboundMessage:
    return OutboundMessage.plain(
        "🔄 *Sistema restaurado*\n\nYa puedes continuar con tu solicitud.\n"
        "Si necesitas ayuda, escribe \"ayuda\"."
    )


def recovery_validation(
    error_id: str,
    message: str,
    field: Optional[FieldKey],
    attempts: int,
    attempts_before_help: int,
) -> OutboundMessage:
    body = f"❌ *Error de validación* ({error_id})\n\n{message}\n\n{field_example_line(field)}"
    if field is not None and attempts >= attempts_before_help:
        body += "\n\n🤝 Parece que este dato está costando trabajo. Escribe *ayuda* si lo necesitas."
    if field is None:
        return OutboundMessage.choices(
            body,
            [("1", "Elige una opción válida"), ("2", "Escribe *menu* para volver al inicio"), ("3", "Escribe *ayuda*")],
        )
    return OutboundMessage.choices(
        body + "\n\n*¿Necesitas ayuda?*",
        [("1", "Ver más ejemplos"), ("2", "Contactar soporte"), ("3", "Continuar intentando")],
    )


def recovery_rate_limit(error_id: str, wait_seconds: int, support_web_url: str) -> OutboundMessage:
    return OutboundMessage.choices(
        f"⏰ *Límite de mensajes alcanzado* ({error_id})\n\n"
        f"⏳ Espera {wait_seconds} segundos y podrás continuar.\n\n💡 *Mientras tanto:*",
        [
            ("1", "Prepara tu información"),
            ("2", "Revisa que tengas todos los datos"),
            ("3", f"Visita {support_web_url}"),
        ],
    )


def recovery_processing(error_id: str, support_email: str, support_web_url: str) -> OutboundMessage:
    return OutboundMessage.choices(
        f"🔧 *Error técnico* ({error_id})\n\nSe produjo un error inesperado.\n"
        "*Tu progreso está guardado.*\n*¿Qué deseas hacer?*",
        [
            ("1", "Intentar de nuevo"),
            ("2", f"Continuar en la web: {support_web_url}"),
            ("3", f"Contactar soporte: {support_email}"),
        ],
    )


def suspension_notice(error_id: str, hours: float, support_email: str, support_web_url: str) -> str:
    duration = f"{hours:g} hora" if hours == 1 else f"{hours:g} horas"
    return (
        f"🚫 *Cuenta temporalmente suspendida* ({error_id})\n\n"
        "Demasiados errores detectados en la última hora.\n\n"
        f"*Suspensión temporal:* {duration}\n\n"
        "*Para ayuda inmediata:*\n"
        f"📧 {support_email}\n"
        f"🌐 {support_web_url}"
    )


def last_resort(error_id: str, support_email: str, support_web_url: str) -> str:
    return (
        f"⚠️ Error crítico ({error_id})\n\nContacta soporte:\n{support_email}\n\n"
        f"O visita:\n{support_web_url}"
    )
