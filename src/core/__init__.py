# src/core/__init__.py
"""
Доменный слой маркетплейса.

Пакеты:
- pricing: цена места, тариф бронирования, фиксированные маршруты
- rides: поездки водителей и учёт мест
- bookings: бронирования и их конечный автомат
- ride_requests: заявки пассажиров, предложения водителей, рассылка диспетчеру
- jit: оплата ближайшей поездки до создания заявки
- payments: намерения оплаты, возвраты, сверка по вебхукам
- notifications: уведомления участникам через шину событий
"""

__all__: list[str] = []
