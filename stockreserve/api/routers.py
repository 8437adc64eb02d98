from fastapi import APIRouter
from stockreserve.api.__init__ import version_prefix
from stockreserve.common.routes import home_router
from stockreserve.inventory.routes import inventory_admin_router, inventory_public_router
from stockreserve.reservations.routes import reservations_admin_router, reservations_router, stock_reserve_router
from stockreserve.warehouses.routes import warehouses_admin_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(stock_reserve_router, tags=["stock-reserve"])
public_routers.include_router(reservations_router, prefix="/reservations", tags=["reservations"])
public_routers.include_router(inventory_public_router, prefix="/inventory", tags=["inventory"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin")

admin_routers.include_router(inventory_admin_router, prefix="/inventory", tags=["inventory-admin"])
admin_routers.include_router(reservations_admin_router, prefix="/reservations", tags=["reservations-admin"])
admin_routers.include_router(warehouses_admin_router, prefix="/warehouses", tags=["warehouses-admin"])
