"""frappe-provisioner - ERPNext/HRMS 生产环境幂等安装编排器"""

__version__ = "0.1.0"
