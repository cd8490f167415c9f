"""
远程Shell命令构建

所有参数都经过shlex.quote，需要root权限的命令按配置加sudo前缀
"""
import posixpath
import shlex

PROBE_GIT = 'GIT'
PROBE_FOREIGN = 'FOREIGN'
PROBE_ABSENT = 'ABSENT'

DIR_MODE = '755'
FILE_MODE = '644'

LOCK_BROKEN = 'LOCK_BROKEN'
LOCK_HELD = 'LOCK_HELD'
LOCK_GONE = 'LOCK_GONE'


class CommandBuilder:
    """按目标路径和sudo设置生成命令"""

    def __init__(self, path: str, use_sudo: bool = True):
        self.path = path.rstrip('/') or path
        self.use_sudo = use_sudo

    @property
    def quoted_path(self) -> str:
        return shlex.quote(self.path)

    def _sudo(self, command: str) -> str:
        if self.use_sudo:
            return f"sudo -n {command}"
        return command

    def _git(self, *args: str) -> str:
        # 目录属主是Web服务用户而不是部署用户，需要safe.directory；
        # 权限修正会改变文件mode，关闭fileMode避免工作区被判定为已修改
        parts = [
            'git',
            '-c', f'safe.directory={self.path}',
            '-c', 'core.fileMode=false',
            '-C', self.path,
        ] + list(args)
        return self._sudo(' '.join(shlex.quote(p) for p in parts))

    # 状态探测（只读）

    def probe(self) -> str:
        p = self.quoted_path
        return (
            f"if [ -d {p}/.git ]; then echo {PROBE_GIT}; "
            f"elif [ -d {p} ] && [ -n \"$(ls -A {p} 2>/dev/null)\" ]; then echo {PROBE_FOREIGN}; "
            f"else echo {PROBE_ABSENT}; fi"
        )

    # 内容同步

    def clear(self) -> str:
        parent = shlex.quote(posixpath.dirname(self.path) or '/')
        return self._sudo(f"rm -rf {self.quoted_path}") + ' && ' + self._sudo(f"mkdir -p {parent}")

    def clone(self, url: str, branch: str) -> str:
        parts = ['git', 'clone', '--branch', branch, '--single-branch', url, self.path]
        return self._sudo(' '.join(shlex.quote(p) for p in parts))

    def pull_rebase(self, branch: str) -> str:
        return self._git('pull', '--rebase', 'origin', branch)

    def rebase_abort(self) -> str:
        return self._git('rebase', '--abort')

    def fetch_all(self) -> str:
        return self._git('fetch', '--all', '--prune')

    def reset_hard(self, branch: str) -> str:
        return self._git('reset', '--hard', f'origin/{branch}')

    def install_file(self, source: str, name: str) -> str:
        destination = shlex.quote(posixpath.join(self.path, name))
        return (
            self._sudo(f"mkdir -p {self.quoted_path}")
            + ' && '
            + self._sudo(f"mv -f {shlex.quote(source)} {destination}")
        )

    # 属主和权限

    @staticmethod
    def user_exists(name: str) -> str:
        return f"id -u {shlex.quote(name)} >/dev/null 2>&1"

    def chown(self, owner: str) -> str:
        # "user:" 表示使用该用户的登录组
        return self._sudo(f"chown -R {shlex.quote(owner + ':')} {self.quoted_path}")

    def chmod_dirs(self) -> str:
        return self._sudo(f"find {self.quoted_path} -type d -exec chmod {DIR_MODE} {{}} +")

    def chmod_files(self) -> str:
        return self._sudo(f"find {self.quoted_path} -type f -exec chmod {FILE_MODE} {{}} +")

    # 服务管理

    def service(self, action: str, name: str) -> str:
        return self._sudo(f"systemctl {shlex.quote(action)} {shlex.quote(name)}")

    # 部署锁

    def lock_acquire(self, lock_path: str, owner_line: str) -> str:
        lock = shlex.quote(lock_path)
        parent = shlex.quote(posixpath.dirname(lock_path) or '/')
        return (
            self._sudo(f"mkdir -p {parent}")
            + ' && '
            + self._sudo(f"mkdir {lock}")
            + ' 2>/dev/null && '
            + f"echo {shlex.quote(owner_line)} | " + self._sudo(f"tee {lock}/owner >/dev/null")
        )

    @staticmethod
    def lock_info(lock_path: str) -> str:
        lock = shlex.quote(lock_path)
        return (
            f"if [ -d {lock} ]; then echo $(( $(date +%s) - $(stat -c %Y {lock}) )); "
            f"cat {lock}/owner 2>/dev/null; else echo MISSING; fi"
        )

    def lock_break(self, lock_path: str, moved_path: str, stale_after: int) -> str:
        """
        原子地打破过期锁

        先把锁目录rename到唯一路径，再对移走的目录重新判断是否过期：
        过期则删除并输出LOCK_BROKEN；未过期说明移走的是别人刚拿到的锁，
        移回原处并输出LOCK_HELD；锁已不存在时输出LOCK_GONE
        """
        lock = shlex.quote(lock_path)
        moved = shlex.quote(moved_path)
        script = (
            f"mv -T {lock} {moved} 2>/dev/null || {{ echo {LOCK_GONE}; exit 0; }}; "
            f"age=$(( $(date +%s) - $(stat -c %Y {moved}) )); "
            f"if [ \"$age\" -gt {int(stale_after)} ]; then rm -rf {moved} && echo {LOCK_BROKEN}; "
            f"else mv -T {moved} {lock} && echo {LOCK_HELD}; fi"
        )
        return self._sudo(f"sh -c {shlex.quote(script)}")

    def lock_release(self, lock_path: str) -> str:
        return self._sudo(f"rm -rf {shlex.quote(lock_path)}")
