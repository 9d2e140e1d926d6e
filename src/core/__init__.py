"""
Доменный слой (Core Domain).
Поездки, смены, доступность водителей, отчёты и уведомления.
"""
