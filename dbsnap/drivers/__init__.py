from dbsnap.drivers.base import Driver, DriverContext
from dbsnap.drivers.generic import GenericSQLDriver
from dbsnap.drivers.mysql import MySQLDriver
from dbsnap.drivers.postgres import PostgresDriver

DRIVERS = {
    "pgsql": PostgresDriver,
    "postgres": PostgresDriver,
    "postgresql": PostgresDriver,
    "mysql": MySQLDriver,
    "mariadb": MySQLDriver,
    "sqlite": GenericSQLDriver,
}

# Anything not registered is loaded as plain SQL
DEFAULT_DRIVER = GenericSQLDriver


def register_driver(driver_id, driver_class):
    DRIVERS[driver_id] = driver_class


def get_driver(driver_id):
    return DRIVERS.get(driver_id, DEFAULT_DRIVER)()


__all__ = [
    "DRIVERS", "Driver", "DriverContext", "GenericSQLDriver", "MySQLDriver", "PostgresDriver",
    "get_driver", "register_driver",
]
