"""
数据库初始化脚本
"""
import pymysql
from mediagen.config import get_settings
from mediagen.database import Base, SessionLocal, engine
from mediagen.services.reconciler import seed_credit_packages
import mediagen.models  # noqa: F401  注册所有表

settings = get_settings()


def create_database():
    """创建 MySQL 数据库（使用 sqlite 时跳过）"""
    if settings.SQLALCHEMY_DATABASE_URL:
        return

    conn = pymysql.connect(
        host=settings.DB_HOST,
        port=settings.DB_PORT,
        user=settings.DB_USER,
        password=settings.DB_PASSWORD,
        charset='utf8mb4'
    )
    try:
        with conn.cursor() as cursor:
            cursor.execute(
                f"CREATE DATABASE IF NOT EXISTS {settings.DB_NAME} "
                f"CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
            print(f"数据库 {settings.DB_NAME} 创建成功")
        conn.commit()
    finally:
        conn.close()


def init_database():
    """创建数据库、数据表并写入默认积分套餐"""
    create_database()

    Base.metadata.create_all(bind=engine)
    print("数据表创建成功")

    db = SessionLocal()
    try:
        created = seed_credit_packages(db)
        print(f"写入积分套餐 {created} 个")
    finally:
        db.close()


if __name__ == "__main__":
    init_database()
    print("数据库初始化完成！")
