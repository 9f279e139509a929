import email_validator


def allow_special_use_domains(domains: list[str]) -> None:
    """Acepta en ``EmailStr`` los dominios de uso especial indicados (p.ej. ``.local``).

    email-validator lee la lista a nivel de módulo, así que se modifica en el
    lugar; se llama una sola vez al arrancar la app.
    """
    for domain in domains:
        if domain in email_validator.SPECIAL_USE_DOMAIN_NAMES:
            email_validator.SPECIAL_USE_DOMAIN_NAMES.remove(domain)
