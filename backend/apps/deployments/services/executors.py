"""
远程执行器

对账逻辑只依赖两个能力：执行命令 run() 和上传文件 upload()
- SSHExecutor：通过paramiko连接目标主机
- LocalExecutor：在本机执行（Jenkins节点就是Web主机时，以及测试）
"""
import logging
import math
import os
import shlex
import shutil
import signal
import socket
import subprocess
from typing import NamedTuple, Optional

import paramiko

from apps.deployments.exceptions import CommandTimedOut, UnreachableTarget

logger = logging.getLogger(__name__)

# 远程timeout命令：超时退出码124，-k强制结束后为137
REMOTE_KILL_GRACE = 5
TIMEOUT_EXIT_STATUSES = (124, 137)


class CommandResult(NamedTuple):
    exit_status: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        """合并后的输出（用于日志和错误信息）"""
        return (self.stderr.strip() or self.stdout.strip())


class RemoteExecutor:
    """远程执行器基类"""

    def connect(self):
        """建立连接，失败时抛出UnreachableTarget"""

    def close(self):
        """关闭连接"""

    def run(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        raise NotImplementedError

    def upload(self, local_path: str, remote_path: str):
        raise NotImplementedError

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False


class SSHExecutor(RemoteExecutor):
    """通过SSH执行命令，SFTP上传文件"""

    def __init__(
        self,
        host: str,
        port: int = 22,
        username: str = 'ubuntu',
        key_file: Optional[str] = None,
        connect_timeout: float = 30,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.key_file = key_file
        self.connect_timeout = connect_timeout
        self._client: Optional[paramiko.SSHClient] = None

    def connect(self):
        if self._client is not None:
            return
        client = paramiko.SSHClient()
        client.load_system_host_keys()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            # 未指定私钥时使用SSH agent和默认密钥
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                key_filename=self.key_file,
                allow_agent=self.key_file is None,
                look_for_keys=self.key_file is None,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
            )
        except paramiko.AuthenticationException as e:
            client.close()
            raise UnreachableTarget(f"SSH认证失败 {self.username}@{self.host}:{self.port}", str(e))
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise UnreachableTarget(f"SSH连接失败 {self.host}:{self.port}", str(e))
        self._client = client
        logger.info(f"SSH已连接: {self.username}@{self.host}:{self.port}")

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None

    def _require_client(self) -> paramiko.SSHClient:
        if self._client is None:
            raise UnreachableTarget(f"SSH未连接: {self.host}")
        return self._client

    def run(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        client = self._require_client()
        remote_command, channel_timeout = command, None
        if timeout is not None:
            # 由目标主机上的timeout终止命令，断开连接后命令不会继续执行
            seconds = max(1, math.ceil(timeout))
            remote_command = f"timeout -k {REMOTE_KILL_GRACE} {seconds} sh -c {shlex.quote(command)}"
            channel_timeout = seconds + REMOTE_KILL_GRACE * 2
        logger.debug(f"[ssh {self.host}] {command}")
        channel = None
        try:
            stdin, stdout, stderr = client.exec_command(remote_command, timeout=channel_timeout)
            channel = stdout.channel
            stdin.close()
            out = stdout.read().decode('utf-8', errors='replace')
            err = stderr.read().decode('utf-8', errors='replace')
            exit_status = channel.recv_exit_status()
        except socket.timeout:
            if channel is not None:
                channel.close()
            raise CommandTimedOut(f"远程命令超时（{timeout}秒）", command)
        except paramiko.SSHException as e:
            raise UnreachableTarget(f"SSH会话中断: {self.host}", str(e))
        if timeout is not None and exit_status in TIMEOUT_EXIT_STATUSES:
            raise CommandTimedOut(f"远程命令超时（{timeout}秒）", command)
        return CommandResult(exit_status, out, err)

    def upload(self, local_path: str, remote_path: str):
        client = self._require_client()
        try:
            sftp = client.open_sftp()
            try:
                sftp.put(local_path, remote_path)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise UnreachableTarget(f"SFTP上传失败: {remote_path}", str(e))
        logger.debug(f"[ssh {self.host}] 已上传 {local_path} -> {remote_path}")


class LocalExecutor(RemoteExecutor):
    """在本机执行命令"""

    def __init__(self, shell: str = '/bin/sh'):
        self.shell = shell

    def run(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        logger.debug(f"[local] {command}")
        # 独立进程组，超时时连同子进程一起终止
        process = subprocess.Popen(
            [self.shell, '-c', command],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True,
        )
        try:
            out, err = process.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            os.killpg(process.pid, signal.SIGKILL)
            process.communicate()
            raise CommandTimedOut(f"本地命令超时（{timeout}秒）", command)
        return CommandResult(process.returncode, out, err)

    def upload(self, local_path: str, remote_path: str):
        shutil.copyfile(local_path, remote_path)


def get_executor(config) -> RemoteExecutor:
    """根据配置选择执行器"""
    if config.transport == 'local':
        return LocalExecutor()
    return SSHExecutor(
        host=config.host,
        port=config.port,
        username=config.username,
        key_file=config.key_file,
    )
